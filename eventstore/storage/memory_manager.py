"""
内存管理器（MemoryManager）：把一个表空间文件划分成多个独立增长的虚拟区域。

布局：
- 表空间第1页为管理器头页：魔数、版本、bucket 页数、已分配 bucket 数，随后是 bucket 表
  （每个 bucket 一个字节，记录其所属区域ID，0xFF 表示未分配）
- 第 b 个 bucket 占用表空间页 [2 + b*bucket_pages, 2 + (b+1)*bucket_pages)
- bucket 只在文件末尾追加、永不移动，因此一个区域增长不会影响其他区域已有的偏移

重新打开文件时，根据头页中的 bucket 表重建各区域的 bucket 列表。
"""

import struct
from typing import Dict, List, Tuple

from loguru import logger

from eventstore.errors import CorruptedStorageError, StorageError
from eventstore.storage.tablespace_manager import TablespaceManager

MAX_MEMORY_ID = 254
UNALLOCATED_BUCKET = 0xFF


class VirtualMemory:
    """
    单个区域的字节空间视图。偏移从0开始，按 bucket 粒度增长。
    """
    def __init__(self, manager: 'MemoryManager', memory_id: int):
        self._manager = manager
        self.memory_id = memory_id

    def size(self) -> int:
        """当前可寻址的字节数。"""
        return len(self._manager._regions[self.memory_id]) * self._manager.bucket_size

    def grow(self, n_bytes: int) -> int:
        """
        至少扩展 n_bytes 字节（向上取整到 bucket），返回扩展前的大小。
        """
        previous = self.size()
        bucket_size = self._manager.bucket_size
        needed = (n_bytes + bucket_size - 1) // bucket_size
        for _ in range(needed):
            self._manager._allocate_bucket(self.memory_id)
        return previous

    def read(self, offset: int, length: int) -> bytes:
        self._check_bounds(offset, length)
        result = bytearray()
        page_size = self._manager.page_size
        while length > 0:
            page_id, in_page = self._manager._locate(self.memory_id, offset)
            chunk = min(length, page_size - in_page)
            page = self._manager.tablespace.read_page(page_id)
            result += page[in_page:in_page + chunk]
            offset += chunk
            length -= chunk
        return bytes(result)

    def write(self, offset: int, data: bytes) -> None:
        self._check_bounds(offset, len(data))
        page_size = self._manager.page_size
        ts = self._manager.tablespace
        pos = 0
        while pos < len(data):
            page_id, in_page = self._manager._locate(self.memory_id, offset + pos)
            chunk = min(len(data) - pos, page_size - in_page)
            if chunk == page_size:
                ts.write_page(page_id, bytes(data[pos:pos + chunk]))
            else:
                page = bytearray(ts.read_page(page_id))
                page[in_page:in_page + chunk] = data[pos:pos + chunk]
                ts.write_page(page_id, bytes(page))
            pos += chunk

    def _check_bounds(self, offset: int, length: int) -> None:
        if offset < 0 or length < 0 or offset + length > self.size():
            raise StorageError(
                f"Access [{offset}, {offset + length}) out of bounds for memory {self.memory_id} "
                f"of size {self.size()}")

    def __repr__(self) -> str:
        return f"<VirtualMemory id={self.memory_id} size={self.size()}>"


class MemoryManager:
    """
    把表空间划分为最多 255 个虚拟区域。同一个区域ID总是返回同一个 VirtualMemory。
    """
    # 头页格式：magic(3) version(1) bucket_pages(2) num_buckets(4) 填充(6)
    HEADER_STRUCT = struct.Struct('<3sBHI6x')
    HEADER_SIZE = HEADER_STRUCT.size
    MAGIC = b'MGR'
    LAYOUT_VERSION = 1
    HEADER_PAGE_ID = 1

    def __init__(self, tablespace: TablespaceManager, bucket_pages: int = 16):
        self.tablespace = tablespace
        self.page_size = tablespace.page_size
        self.max_buckets = self.page_size - self.HEADER_SIZE
        self._regions: Dict[int, List[int]] = {}
        self._memories: Dict[int, VirtualMemory] = {}
        if tablespace.total_pages == 0:
            if not 0 < bucket_pages <= 0xFFFF:
                raise ValueError(f"bucket_pages must be in 1..65535, got {bucket_pages}")
            self.bucket_pages = bucket_pages
            self.bucket_table = bytearray([UNALLOCATED_BUCKET] * self.max_buckets)
            self.num_buckets = 0
            tablespace.allocate_page()
            self._save_header()
            logger.debug(f"初始化内存管理器，bucket 大小 {bucket_pages} 页")
        else:
            self._load_header()
            if self.bucket_pages != bucket_pages:
                logger.debug(f"沿用文件中的 bucket 大小 {self.bucket_pages} 页（配置为 {bucket_pages}）")

    @classmethod
    def init(cls, tablespace: TablespaceManager, bucket_pages: int = 16) -> 'MemoryManager':
        """打开或创建内存管理器，幂等。"""
        return cls(tablespace, bucket_pages)

    @property
    def bucket_size(self) -> int:
        return self.bucket_pages * self.page_size

    def _load_header(self) -> None:
        data = self.tablespace.read_page(self.HEADER_PAGE_ID)
        magic, version, bucket_pages, num_buckets = self.HEADER_STRUCT.unpack(data[:self.HEADER_SIZE])
        if magic != self.MAGIC:
            raise CorruptedStorageError("Memory manager header is missing or corrupted.")
        if version != self.LAYOUT_VERSION:
            raise CorruptedStorageError(f"Unsupported memory manager layout version {version}")
        if bucket_pages == 0 or num_buckets > self.max_buckets:
            raise CorruptedStorageError("Memory manager header has invalid bucket geometry.")
        expected_pages = self.HEADER_PAGE_ID + num_buckets * bucket_pages
        if self.tablespace.total_pages < expected_pages:
            raise CorruptedStorageError(
                f"Tablespace has {self.tablespace.total_pages} pages, header expects {expected_pages}")
        self.bucket_pages = bucket_pages
        self.num_buckets = num_buckets
        self.bucket_table = bytearray(data[self.HEADER_SIZE:self.HEADER_SIZE + self.max_buckets])
        for bucket_idx in range(num_buckets):
            memory_id = self.bucket_table[bucket_idx]
            if memory_id == UNALLOCATED_BUCKET:
                raise CorruptedStorageError(f"Bucket {bucket_idx} is counted but unassigned")
            self._regions.setdefault(memory_id, []).append(bucket_idx)
        logger.debug(f"加载内存管理器：{num_buckets} 个 bucket，{len(self._regions)} 个区域")

    def _save_header(self) -> None:
        header = self.HEADER_STRUCT.pack(self.MAGIC, self.LAYOUT_VERSION, self.bucket_pages, self.num_buckets)
        page = bytearray(self.page_size)
        page[:self.HEADER_SIZE] = header
        page[self.HEADER_SIZE:] = self.bucket_table
        self.tablespace.write_page(self.HEADER_PAGE_ID, bytes(page))

    def get(self, memory_id: int) -> VirtualMemory:
        """返回区域句柄，同一ID总是同一个对象。"""
        if not 0 <= memory_id <= MAX_MEMORY_ID:
            raise ValueError(f"Memory id must be in 0..{MAX_MEMORY_ID}, got {memory_id}")
        memory = self._memories.get(memory_id)
        if memory is None:
            self._regions.setdefault(memory_id, [])
            memory = VirtualMemory(self, memory_id)
            self._memories[memory_id] = memory
        return memory

    def _allocate_bucket(self, memory_id: int) -> int:
        if self.num_buckets >= self.max_buckets:
            raise StorageError(f"Memory manager is full ({self.max_buckets} buckets)")
        bucket_idx = self.num_buckets
        first_page = self.tablespace.allocate_pages(self.bucket_pages)
        if first_page != self._bucket_first_page(bucket_idx):
            raise CorruptedStorageError(
                f"Bucket {bucket_idx} landed on page {first_page}, expected {self._bucket_first_page(bucket_idx)}")
        self.bucket_table[bucket_idx] = memory_id
        self.num_buckets += 1
        self._save_header()
        self._regions[memory_id].append(bucket_idx)
        logger.debug(f"为区域 {memory_id} 分配 bucket {bucket_idx}（起始页 {first_page}）")
        return bucket_idx

    def _bucket_first_page(self, bucket_idx: int) -> int:
        return self.HEADER_PAGE_ID + 1 + bucket_idx * self.bucket_pages

    def _locate(self, memory_id: int, offset: int) -> Tuple[int, int]:
        """把区域内偏移转换为 (表空间页ID, 页内偏移)。"""
        buckets = self._regions[memory_id]
        bucket_no, in_bucket = divmod(offset, self.bucket_size)
        page_no, in_page = divmod(in_bucket, self.page_size)
        return self._bucket_first_page(buckets[bucket_no]) + page_no, in_page

    def memory_ids(self) -> List[int]:
        """已经拥有至少一个 bucket 的区域ID。"""
        return sorted(mid for mid, buckets in self._regions.items() if buckets)
