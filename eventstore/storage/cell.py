import struct

from loguru import logger

from eventstore.errors import CorruptedStorageError, StorageError
from eventstore.storage.memory_manager import VirtualMemory

U64_MAX = 0xFFFFFFFFFFFFFFFF


class Cell:
    """
    持久化的单值 u64 单元，独占一个虚拟区域。
    区域起始处为 magic(3) + version(1) 头，随后是 8 字节的值。
    """
    HEADER_STRUCT = struct.Struct('<3sB')
    VALUE_STRUCT = struct.Struct('<Q')
    MAGIC = b'CEL'
    LAYOUT_VERSION = 1

    def __init__(self, memory: VirtualMemory, value: int):
        self.memory = memory
        self._value = value

    @classmethod
    def init(cls, memory: VirtualMemory, initial_value: int) -> 'Cell':
        """
        区域为空时写入初始值，否则加载已持久化的值。多次调用结果一致。
        """
        if memory.size() == 0:
            _check_u64(initial_value)
            memory.grow(cls.HEADER_STRUCT.size + cls.VALUE_STRUCT.size)
            memory.write(0, cls.HEADER_STRUCT.pack(cls.MAGIC, cls.LAYOUT_VERSION)
                         + cls.VALUE_STRUCT.pack(initial_value))
            logger.debug(f"创建计数单元，区域 {memory.memory_id}，初始值 {initial_value}")
            return cls(memory, initial_value)
        raw = memory.read(0, cls.HEADER_STRUCT.size + cls.VALUE_STRUCT.size)
        magic, version = cls.HEADER_STRUCT.unpack(raw[:cls.HEADER_STRUCT.size])
        if magic != cls.MAGIC or version != cls.LAYOUT_VERSION:
            raise CorruptedStorageError(f"Memory {memory.memory_id} does not hold a cell")
        value = cls.VALUE_STRUCT.unpack(raw[cls.HEADER_STRUCT.size:])[0]
        logger.debug(f"加载计数单元，区域 {memory.memory_id}，当前值 {value}")
        return cls(memory, value)

    def get(self) -> int:
        return self._value

    def set(self, new_value: int) -> int:
        """持久化新值并返回旧值。写入失败抛出 StorageError。"""
        _check_u64(new_value)
        try:
            self.memory.write(self.HEADER_STRUCT.size, self.VALUE_STRUCT.pack(new_value))
        except StorageError:
            logger.error(f"计数单元写入失败，区域 {self.memory.memory_id}")
            raise
        previous = self._value
        self._value = new_value
        return previous


def _check_u64(value: int) -> None:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"Value {value} does not fit in u64")
