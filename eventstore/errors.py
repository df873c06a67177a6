"""
存储层不可恢复错误。

这些异常表示不变量被破坏（记录超长、字节损坏、文件头不匹配、底层 I/O 故障），
一旦抛出，当前请求必须整体失败。业务层的可预期错误（NotFound 等）不在此处，
见 `eventstore.engine.event_service.EventError`。
"""


class StorageError(Exception):
    """存储层错误基类，调用方应视为致命错误。"""


class CorruptedStorageError(StorageError):
    """文件头、区域头或页面结构与预期格式不一致。"""


class RecordTooLargeError(StorageError):
    """记录编码后的长度超过上限。"""

    def __init__(self, size: int, max_size: int):
        super().__init__(f"Record size {size} exceeds maximum of {max_size} bytes")
        self.size = size
        self.max_size = max_size


class CorruptRecordError(StorageError):
    """无法解码的记录字节。"""
