"""生成后端集成层。

该包下的模块负责：
- 定义后端抽象接口 (base)。
- 维护后端默认配置 (registry)。
- 提供具体实现 (remote_client、local_client)。
"""

from typing import Optional

from support_core.config.settings import settings
from support_core.providers.base import GenerationBackend
from support_core.providers.local_client import LocalLlamaBackend
from support_core.providers.remote_client import RemoteChatBackend


def create_backend(name: Optional[str] = None) -> GenerationBackend:
    """根据名称创建后端实例，默认取配置中的 default_backend。

    本地后端只创建不加载，调用方负责 open()/close()。
    """

    backend_name = (name or getattr(settings, "default_backend", "remote")).lower()
    if backend_name == "local":
        return LocalLlamaBackend(settings)
    if backend_name == "remote":
        return RemoteChatBackend(settings)
    raise KeyError(f"Unknown backend: {backend_name!r}")
