import pytest

from support_core.providers import create_backend
from support_core.providers.local_client import LocalLlamaBackend
from support_core.providers.registry import get_backend_config
from support_core.providers.remote_client import RemoteChatBackend


def test_create_backend_default(monkeypatch):
    class DummySettings:
        default_backend = "remote"
        remote_base_url = "http://localhost:4891/v1"
        http_timeout = 1.0

    monkeypatch.setattr("support_core.providers.settings", DummySettings())
    backend = create_backend()
    assert isinstance(backend, RemoteChatBackend)


def test_create_backend_explicit(monkeypatch):
    class DummySettings:
        default_backend = "remote"
        local_model_path = "/models/m.gguf"

    monkeypatch.setattr("support_core.providers.settings", DummySettings())
    backend = create_backend("LOCAL")
    assert isinstance(backend, LocalLlamaBackend)
    # 只创建不加载
    assert backend.is_available() is False


def test_create_backend_unknown():
    with pytest.raises(KeyError):
        create_backend("cloud")


def test_registry_lookup_is_case_insensitive():
    assert get_backend_config("Remote").base_url == "http://localhost:4891/v1"
    with pytest.raises(KeyError):
        get_backend_config("missing")


def test_package_surface_is_the_factory():
    import support_core.providers as providers

    assert callable(providers.create_backend)
    assert not hasattr(providers, "DefaultBackendName")
