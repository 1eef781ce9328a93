"""生成后端配置。

集中登记可选的后端及其默认值。Settings 中的同名字段优先，
这里的默认值只在配置缺失时兜底。"""

from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass
class BackendConfig:
    """单个后端的静态配置。"""

    name: str
    label: str
    base_url: Optional[str] = None
    model: Optional[str] = None


# OpenAI 兼容接口（默认是 GPT4All 开启 Local API Server 后的地址）
REMOTE_CONFIG = BackendConfig(
    name="remote",
    label="OpenAI-compatible chat API",
    base_url="http://localhost:4891/v1",
    model="Mistral Instruct",
)

# 进程内 llama.cpp 推理
LOCAL_CONFIG = BackendConfig(
    name="local",
    label="llama.cpp in-process model",
)


BACKEND_REGISTRY: Mapping[str, BackendConfig] = {
    "remote": REMOTE_CONFIG,
    "local": LOCAL_CONFIG,
}


def get_backend_config(name: str) -> BackendConfig:
    """根据名称获取 BackendConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in BACKEND_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown backend: {name!r}")
