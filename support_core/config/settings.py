"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：显式参数 > 环境变量 > .env > config.yaml > 默认值。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("SUPPORT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class SupportSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 生成后端选择 ----
    default_backend: str = Field(
        default="remote",
        description="默认使用的生成后端：remote（OpenAI 兼容 HTTP）或 local（进程内模型）",
    )

    # 远程 OpenAI 兼容接口（默认指向 GPT4All 本地 API Server）
    remote_base_url: str = Field(
        default="http://localhost:4891/v1",
        description="远程 chat-completion 接口基础URL",
    )
    remote_model: str = Field(
        default="Mistral Instruct",
        description="远程接口使用的模型名",
    )
    remote_api_key: Optional[str] = Field(default=None, description="远程接口 API 密钥（可选）")
    http_timeout: float = Field(default=60.0, ge=1.0, description="生成请求超时时间（秒）")
    probe_timeout: float = Field(default=5.0, gt=0.0, description="可用性探测超时时间（秒）")

    # 本地推理
    local_model_path: Optional[str] = Field(default=None, description="本地 GGUF 模型文件路径")
    local_context_size: int = Field(default=2048, ge=256, description="本地模型上下文长度")
    local_timeout: float = Field(default=120.0, ge=1.0, description="本地推理超时时间（秒）")

    # ---- 生成参数 ----
    max_tokens: int = Field(default=150, ge=1, description="回复最大 token 数")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="采样温度")
    reply_word_limit: int = Field(default=100, ge=10, description="系统提示词中的回复字数上限")
    prompt_locale: str = Field(default="en", description="提示词语言目录")

    # ---- 安全相关数据文件 ----
    risk_terms_file: Optional[str] = Field(default=None, description="危机/困扰关键词 YAML 文件")
    crisis_resources_file: Optional[str] = Field(default=None, description="危机求助资源文本文件")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    max_history_messages: int = Field(default=200, ge=1, description="历史接口单次返回的最大消息数")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("default_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        name = (v or "").strip().lower()
        if name not in {"remote", "local"}:
            raise ValueError(f"Unknown backend: {v!r}")
        return name

    @field_validator("remote_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = SupportSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = SupportSettings
