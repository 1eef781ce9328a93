import json
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from support_core.config.settings import settings
from support_core.domain.conversation import ConversationStore, Turn
from support_core.domain.exceptions import StoreError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _to_iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonTurnStore(ConversationStore):
    """按用户拆分的 JSONL 追加存储。

    每个用户一个 turns/<user_id>.jsonl 文件，只追加不修改。
    created_at 对同一用户单调不减：系统时钟回拨时沿用上一条的时间戳。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._turn_root = self._root / "turns"
        self._turn_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._last_ts: Dict[str, datetime] = {}

    def append(self, turn: Turn) -> Turn:
        with self._lock:
            path = self._user_path(turn.user_id)
            now = datetime.now(timezone.utc)
            last = self._last_created_at(turn.user_id, path)
            if last is not None and now < last:
                now = last
            stored = Turn(
                id=f"t-{uuid4().hex}",
                user_id=turn.user_id,
                role=turn.role,
                text=turn.text,
                created_at=now,
            )
            payload = {
                "id": stored.id,
                "user_id": stored.user_id,
                "role": stored.role,
                "text": stored.text,
                "created_at": _to_iso(now),
            }
            try:
                with path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(payload, ensure_ascii=False) + "\n")
            except OSError as e:
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
            self._last_ts[turn.user_id] = now
            return stored

    def list_by_user(self, user_id: str) -> List[Turn]:
        path = self._user_path(user_id)
        items: List[Turn] = []
        if not path.exists():
            return items
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        for line in lines:
            try:
                turn = self._to_turn(json.loads(line))
            except (ValueError, KeyError, TypeError):
                continue
            # 文件名经过清洗，不同 user_id 可能落到同一文件
            if turn.user_id == str(user_id):
                items.append(turn)
        # 稳定排序：时间戳相同时保留写入顺序
        items.sort(key=lambda t: t.created_at)
        return items

    def list_recent(self, user_id: str, limit: int = 10) -> List[Turn]:
        if limit <= 0:
            return []
        return self.list_by_user(user_id)[-limit:]

    def _last_created_at(self, user_id: str, path: Path) -> datetime | None:
        if user_id in self._last_ts:
            return self._last_ts[user_id]
        if not path.exists():
            return None
        turns = self.list_by_user(user_id)
        if not turns:
            return None
        last = turns[-1].created_at
        self._last_ts[user_id] = last
        return last

    def _user_path(self, user_id: str) -> Path:
        safe = _UNSAFE_CHARS.sub("_", str(user_id))
        if not safe.strip("._"):
            raise StoreError(code="INVALID_USER_ID", message=f"Invalid user id: {user_id!r}", http_status=400)
        return self._turn_root / f"{safe}.jsonl"

    def _to_turn(self, data: Dict[str, Any]) -> Turn:
        return Turn(
            id=data["id"],
            user_id=str(data["user_id"]),
            role=data["role"],
            text=data.get("text") or "",
            created_at=_from_iso(data["created_at"]),
        )
