import os
from typing import Optional

from loguru import logger

from eventstore.config import StoreConfig
from eventstore.engine.storage.event_codec import EventCodec
from eventstore.engine.storage.record_table import RecordTable
from eventstore.storage.cell import Cell
from eventstore.storage.memory_manager import MemoryManager
from eventstore.storage.tablespace_manager import TablespaceManager

# 固定的区域布局
ID_COUNTER_MEMORY_ID = 0
RECORD_TABLE_MEMORY_ID = 1
# 第一个发放的ID
INITIAL_ID = 1


class StableStorage:
    """
    进程内唯一的存储上下文：打开存储文件，按固定布局建立计数单元（区域0）和记录表（区域1）。
    在进程启动时构造一次，再传给服务层；不使用全局单例。
    """
    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        path = self.config.storage_path
        data_dir = os.path.dirname(path)
        if data_dir and not os.path.exists(data_dir):
            os.makedirs(data_dir)
        self.tablespace = TablespaceManager(path, page_size=self.config.page_size)
        try:
            self.memory_manager = MemoryManager.init(self.tablespace, bucket_pages=self.config.bucket_pages)
            self.id_counter = Cell.init(self.memory_manager.get(ID_COUNTER_MEMORY_ID), INITIAL_ID)
            self.records = RecordTable.init(
                self.memory_manager.get(RECORD_TABLE_MEMORY_ID),
                max_value_size=self.config.max_record_size,
                page_size=self.config.page_size,
                buffer_size=self.config.buffer_size,
            )
        except Exception:
            self.tablespace.close()
            raise
        self.codec = EventCodec(max_size=self.config.max_record_size)
        logger.info(f"打开存储 {path}：下一个ID {self.id_counter.get()}，记录数 {len(self.records)}")

    def close(self) -> None:
        if self.tablespace is None:
            return
        self.records.bp.flush_all()
        self.tablespace.sync()
        self.tablespace.close()
        self.tablespace = None
        logger.info(f"关闭存储 {self.config.storage_path}")

    def __enter__(self) -> 'StableStorage':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
