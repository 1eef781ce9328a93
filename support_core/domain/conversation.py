from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from .models import Role


@dataclass(frozen=True)
class Turn:
    """一条已持久化（或待持久化）的对话消息。

    id 与 created_at 由存储在 append 时分配，调用方传 None 即可。
    """

    user_id: str
    role: Role
    text: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None


class ConversationStore(Protocol):
    def append(self, turn: Turn) -> Turn:
        """追加一条消息，返回带 id / created_at 的新 Turn。"""
        ...

    def list_by_user(self, user_id: str) -> List[Turn]:
        """按时间从旧到新返回该用户的全部消息。"""
        ...

    def list_recent(self, user_id: str, limit: int = 10) -> List[Turn]:
        ...
