from .base import JobStorage
from .memory_storage import MemoryStorage
from .sql_storage import SqlStorage

__all__ = ["JobStorage", "MemoryStorage", "SqlStorage"]
