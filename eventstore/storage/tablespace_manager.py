import os
import struct

from loguru import logger

from eventstore.errors import CorruptedStorageError, StorageError


class TablespaceManager:
    """
    管理单个物理存储文件（表空间），提供按页读写与追加分配。
    页只增不减：区域划分由上层 MemoryManager 负责，这里不维护空闲链表。
    """
    # 文件头：魔数(4字节) + 页大小(4字节无符号整数)
    FILE_HEADER_STRUCT = struct.Struct('<4sI')
    FILE_HEADER_SIZE = FILE_HEADER_STRUCT.size
    MAGIC = b'EVST'

    def __init__(self, path: str, page_size: int = 4096):
        self.path = path
        self.page_size = page_size
        self._file = None

        is_new_file = not os.path.exists(path) or os.path.getsize(path) == 0

        try:
            if is_new_file:
                self._file = open(self.path, 'w+b')
                self._file.write(self.FILE_HEADER_STRUCT.pack(self.MAGIC, page_size))
                self._file.flush()
                self.total_pages = 0
            else:
                self._file = open(self.path, 'r+b')
                self._check_header()
                file_size = os.path.getsize(self.path)
                self.total_pages = (file_size - self.FILE_HEADER_SIZE) // self.page_size
        except OSError as e:
            self.close()
            raise StorageError(f"Cannot open tablespace {path}: {e}") from e
        logger.debug(f"打开表空间 {path}，页大小 {page_size}，现有 {self.total_pages} 页")

    def _check_header(self) -> None:
        self._file.seek(0)
        header_bytes = self._file.read(self.FILE_HEADER_SIZE)
        if len(header_bytes) < self.FILE_HEADER_SIZE:
            self.close()
            raise CorruptedStorageError("Tablespace file header is corrupted or missing.")
        magic, page_size = self.FILE_HEADER_STRUCT.unpack(header_bytes)
        if magic != self.MAGIC:
            self.close()
            raise CorruptedStorageError(f"{self.path} is not an event store file.")
        if page_size != self.page_size:
            self.close()
            raise CorruptedStorageError(
                f"Tablespace page size {page_size} does not match configured page size {self.page_size}")

    def _get_page_offset(self, page_id: int) -> int:
        """根据页ID计算文件内的偏移量 (页ID从1开始)"""
        if page_id < 1:
            raise ValueError("Page ID must be positive.")
        return self.FILE_HEADER_SIZE + (page_id - 1) * self.page_size

    def allocate_page(self) -> int:
        """在文件末尾追加一个全零页，返回其页ID。"""
        page_id = self.total_pages + 1
        self.write_page(page_id, b'\x00' * self.page_size)
        self.total_pages += 1
        return page_id

    def allocate_pages(self, count: int) -> int:
        """连续追加 count 个页，返回第一个页ID。"""
        first = self.total_pages + 1
        for _ in range(count):
            self.allocate_page()
        return first

    def _require_open(self) -> None:
        if self._file is None or self._file.closed:
            raise StorageError(f"Tablespace {self.path} is closed")

    def read_page(self, page_id: int) -> bytes:
        self._require_open()
        if page_id > self.total_pages:
            raise StorageError(f"Page {page_id} is beyond the end of the tablespace ({self.total_pages} pages)")
        offset = self._get_page_offset(page_id)
        try:
            self._file.seek(offset)
            data = self._file.read(self.page_size)
        except OSError as e:
            raise StorageError(f"Failed to read page {page_id}: {e}") from e
        if len(data) != self.page_size:
            raise CorruptedStorageError(f"Page {page_id} is truncated ({len(data)} bytes)")
        return data

    def write_page(self, page_id: int, data: bytes) -> None:
        if len(data) != self.page_size:
            raise ValueError(f"Data size {len(data)} does not match page size {self.page_size}")
        self._require_open()
        offset = self._get_page_offset(page_id)
        try:
            self._file.seek(offset)
            self._file.write(data)
            self._file.flush()
        except OSError as e:
            logger.error(f"写入页 {page_id} 失败: {e}")
            raise StorageError(f"Failed to write page {page_id}: {e}") from e

    def sync(self) -> None:
        """将操作系统缓存刷到磁盘。"""
        if self._file and not self._file.closed:
            try:
                self._file.flush()
                os.fsync(self._file.fileno())
            except OSError as e:
                raise StorageError(f"Failed to sync {self.path}: {e}") from e

    def close(self) -> None:
        if self._file and not self._file.closed:
            self._file.close()
        self._file = None

    def delete_file(self) -> None:
        self.close() # 删除前确保文件已关闭
        if os.path.exists(self.path):
            os.remove(self.path)

    def __del__(self):
        # 确保对象被垃圾回收时，文件句柄也能被关闭
        self.close()
