"""
页面抽象。
"""

from typing import Optional


class BasePage:
    """
    所有页类型的统一基类，持有页的原始字节与脏标记。
    """
    def __init__(self, page_id: int, data: Optional[bytes] = None, page_size: int = 4096):
        self.page_id = page_id
        self.page_size = page_size
        if data is not None:
            if len(data) != page_size:
                raise ValueError(f"Page data is {len(data)} bytes, expected {page_size}")
            self.data = bytearray(data)
        else:
            self.data = bytearray(page_size)
        self.is_dirty = False

    def to_bytes(self) -> bytes:
        return bytes(self.data)

    def mark_dirty(self) -> None:
        self.is_dirty = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.page_id} size={self.page_size} dirty={self.is_dirty}>"
