import tempfile
from pathlib import Path

import pydantic
import pytest

from support_core.config.settings import SupportSettings


def test_defaults(monkeypatch):
    monkeypatch.delenv("SUPPORT_CONFIG_FILE", raising=False)
    s = SupportSettings(_env_file=None)
    assert s.max_tokens == 150
    assert s.temperature == 0.7
    assert s.default_backend == "remote"


def test_yaml_source_and_env_priority(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        cfg = Path(d) / "config.yaml"
        cfg.write_text(
            "max_tokens: 99\ntemperature: 0.3\nremote_base_url: http://llm.internal:8000/v1/\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("SUPPORT_CONFIG_FILE", str(cfg))
        monkeypatch.setenv("TEMPERATURE", "0.9")
        s = SupportSettings(_env_file=None)
    assert s.max_tokens == 99
    assert s.temperature == 0.9
    assert s.remote_base_url == "http://llm.internal:8000/v1"


def test_unknown_backend_rejected(monkeypatch):
    monkeypatch.delenv("SUPPORT_CONFIG_FILE", raising=False)
    with pytest.raises(pydantic.ValidationError):
        SupportSettings(_env_file=None, default_backend="cloud")
