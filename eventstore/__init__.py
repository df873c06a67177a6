"""
eventstore：持久化的 Event 记录存储。

- storage: 表空间、内存管理器（虚拟区域）、缓冲池、B+树页、计数单元
- engine: 记录表、编解码、存储上下文与 Event 服务
"""

from eventstore.config import StoreConfig
from eventstore.engine.event import Event, EventPayload
from eventstore.engine.event_service import ErrorKind, EventError, EventService
from eventstore.engine.storage.stable_storage import StableStorage

__all__ = [
    "StoreConfig",
    "Event", "EventPayload",
    "ErrorKind", "EventError", "EventService",
    "StableStorage",
]
