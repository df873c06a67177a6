import struct

from loguru import logger

from eventstore.errors import CorruptedStorageError
from eventstore.storage.memory_manager import VirtualMemory


class RegionPager:
    """
    在一个虚拟区域内按固定大小分页，接口与 TablespaceManager 相同，供 BufferPool 使用。
    区域第1页是分页头，记录已分配页数；页ID从1开始，1号页本身不对外分配。
    """
    HEADER_STRUCT = struct.Struct('<3sBI')
    MAGIC = b'PGR'
    LAYOUT_VERSION = 1
    HEADER_PAGE_ID = 1

    def __init__(self, memory: VirtualMemory, page_size: int = 4096):
        self.memory = memory
        self.page_size = page_size
        if memory.size() == 0:
            memory.grow(page_size)
            self.total_pages = self.HEADER_PAGE_ID
            self._save_header()
        else:
            magic, version, total_pages = self.HEADER_STRUCT.unpack(
                memory.read(0, self.HEADER_STRUCT.size))
            if magic != self.MAGIC or version != self.LAYOUT_VERSION:
                raise CorruptedStorageError(f"Memory {memory.memory_id} does not hold a paged region")
            if total_pages * page_size > memory.size():
                raise CorruptedStorageError(
                    f"Paged region claims {total_pages} pages but memory {memory.memory_id} is smaller")
            self.total_pages = total_pages

    def _save_header(self) -> None:
        self.memory.write(0, self.HEADER_STRUCT.pack(self.MAGIC, self.LAYOUT_VERSION, self.total_pages))

    def _get_page_offset(self, page_id: int) -> int:
        if page_id <= self.HEADER_PAGE_ID or page_id > self.total_pages:
            raise ValueError(f"Page {page_id} is not an allocated page of memory {self.memory.memory_id}")
        return (page_id - 1) * self.page_size

    def allocate_page(self) -> int:
        page_id = self.total_pages + 1
        end = page_id * self.page_size
        if end > self.memory.size():
            self.memory.grow(end - self.memory.size())
        self.total_pages = page_id
        self._save_header()
        logger.debug(f"区域 {self.memory.memory_id} 分配页 {page_id}")
        return page_id

    def read_page(self, page_id: int) -> bytes:
        return self.memory.read(self._get_page_offset(page_id), self.page_size)

    def write_page(self, page_id: int, data: bytes) -> None:
        if len(data) != self.page_size:
            raise ValueError(f"Data size {len(data)} does not match page size {self.page_size}")
        self.memory.write(self._get_page_offset(page_id), data)
