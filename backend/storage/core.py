"""Storage initialization and path helpers."""

from pathlib import Path

from geosim.storage import SessionStore

_data_dir: Path | None = None
_sessions: SessionStore | None = None


def init_storage(data_dir: Path) -> None:
    global _data_dir, _sessions
    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)
    _sessions = SessionStore(_data_dir)


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_storage() before using storage"
    return _data_dir


def sessions() -> SessionStore:
    assert _sessions is not None, "Call init_storage() before using storage"
    return _sessions
