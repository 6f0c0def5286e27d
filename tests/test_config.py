"""Tests for environment configuration."""

from pathlib import Path

from threadsync import config


def test_service_url_strips_trailing_slash(monkeypatch):
    monkeypatch.setenv("THREADSYNC_SERVICE_URL", "https://threads.example.com/")
    assert config.get_service_base_url() == "https://threads.example.com"
    monkeypatch.setenv("THREADSYNC_SERVICE_URL", "")
    assert config.get_service_base_url() is None


def test_defaults(monkeypatch):
    for name in ("THREADSYNC_ASSISTANT_ID", "THREADSYNC_ASSISTANT_NAME", "THREADSYNC_PAGE_SIZE",
                 "THREADSYNC_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    assert config.get_assistant_id() == "agent"
    assert config.get_assistant_name() == "Research Agent"
    assert config.get_page_size() == 20
    assert config.get_access_token() is None


def test_page_size(monkeypatch):
    monkeypatch.setenv("THREADSYNC_PAGE_SIZE", "50")
    assert config.get_page_size() == 50
    monkeypatch.setenv("THREADSYNC_PAGE_SIZE", "lots")
    assert config.get_page_size() == 20
    monkeypatch.setenv("THREADSYNC_PAGE_SIZE", "-1")
    assert config.get_page_size() == 20


def test_store_path_override(monkeypatch, tmp_path):
    monkeypatch.setenv("THREADSYNC_STORE_PATH", str(tmp_path / "x.db"))
    assert config.get_store_path() == tmp_path / "x.db"


def test_store_path_default(monkeypatch):
    monkeypatch.delenv("THREADSYNC_STORE_PATH", raising=False)
    path = config.get_store_path()
    assert isinstance(path, Path)
    assert path.name == "state.db"
    assert path.parent.name == "threadsync"


def test_is_valid_uuid():
    assert config.is_valid_uuid("0B7F6C1E-6C36-4B8E-9A55-2F1F5B7F0C11")
    assert not config.is_valid_uuid("abc-not-a-uuid")
    assert not config.is_valid_uuid("")
    assert not config.is_valid_uuid(None)


def test_is_valid_url():
    assert config.is_valid_url("http://localhost:8000")
    assert config.is_valid_url("https://threads.example.com")
    assert not config.is_valid_url("ftp://threads.example.com")
    assert not config.is_valid_url("threads.example.com")
