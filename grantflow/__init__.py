from .client import Client
from .config import EngineSettings, configure as _configure, get_storage
from .server.engine import JobQueueEngine
from .server.registry import HandlerRegistry

_client: Client | None = None


def configure(storage) -> None:
    _configure(storage)
    global _client
    _client = None


def get_client() -> Client:
    global _client
    if _client is None:
        _client = Client(get_storage(), settings=EngineSettings.from_env())
    return _client


def get_engine() -> JobQueueEngine:
    return get_client().engine


__all__ = [
    "Client",
    "EngineSettings",
    "HandlerRegistry",
    "JobQueueEngine",
    "configure",
    "get_client",
    "get_engine",
    "get_storage",
]
