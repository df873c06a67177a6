from typing import Callable, Optional
import time

from loguru import logger

from eventstore.config import StoreConfig
from eventstore.engine.event_service import EventService
from eventstore.engine.storage.stable_storage import StableStorage


class SystemManager:
    """系统管理类，负责存储上下文与事件服务的生命周期"""

    def __init__(self, config: Optional[StoreConfig] = None, clock: Callable[[], int] = time.time_ns):
        self.config = config or StoreConfig()
        self.storage = StableStorage(self.config)
        self.event_service = EventService(self.storage, clock=clock)

    def shutdown(self):
        """关闭存储，确保数据写回文件"""
        if self.storage is not None:
            self.storage.close()
            self.storage = None
            logger.info("系统已关闭")
