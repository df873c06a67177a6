"""
缓冲池（BufferPool）模块。

职责：
- 提供页缓存（LRU）与钉住计数管理
- 脏页刷新
- 抽象出从页存储（TablespaceManager 或 RegionPager）读取/写入页的细节
"""

from collections import OrderedDict
from typing import Any, Callable, Dict, Protocol, Set

from loguru import logger

from .page import BasePage


class PageStore(Protocol):
    page_size: int

    def allocate_page(self) -> int: ...

    def read_page(self, page_id: int) -> bytes: ...

    def write_page(self, page_id: int, data: bytes) -> None: ...


class BufferPool:
    """
    缓冲池，协调页对象和页存储，管理内存页缓存。
    支持LRU淘汰、脏页管理、钉住计数。
    """
    def __init__(self, page_store: PageStore, buffer_size: int) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be positive")
        self.page_store = page_store
        self.buffer_size = buffer_size
        self.cache: 'OrderedDict[int, BasePage]' = OrderedDict()  # page_id -> Page
        self.dirty_pages: Set[int] = set()
        self.pin_count: Dict[int, int] = {}

    def get_page(self, page_id: int, page_cls: Callable[..., BasePage] = BasePage, *args: Any, **kwargs: Any) -> BasePage:
        """
        获取指定页，优先从缓存，否则从存储加载。
        页被自动钉住（pin_count+1）。
        :param page_cls: 页类或工厂函数，签名为 (page_id, data=..., page_size=...)
        """
        if page_id in self.cache:
            page = self.cache.pop(page_id)
            self.cache[page_id] = page  # LRU: move to end
        else:
            if len(self.cache) >= self.buffer_size:
                self._evict_page()
            data = self.page_store.read_page(page_id)
            page = page_cls(page_id, data=data, page_size=self.page_store.page_size, *args, **kwargs)
            self.cache[page_id] = page
        self.pin_count[page_id] = self.pin_count.get(page_id, 0) + 1
        return page

    def unpin_page(self, page_id: int, is_dirty: bool) -> None:
        """
        通知缓冲池页已使用完毕，减少pin计数，并标记脏页。
        """
        if page_id not in self.cache:
            return
        if is_dirty:
            self.dirty_pages.add(page_id)
            self.cache[page_id].is_dirty = True
        if self.pin_count.get(page_id, 0) > 0:
            self.pin_count[page_id] -= 1

    def flush_page(self, page_id: int) -> None:
        """
        强制将指定脏页写回存储。
        """
        page = self.cache.get(page_id)
        if page is not None and page.is_dirty:
            self.page_store.write_page(page_id, page.to_bytes())
            page.is_dirty = False
        self.dirty_pages.discard(page_id)

    def new_page(self, page_cls: Callable[..., BasePage] = BasePage, *args: Any, **kwargs: Any) -> BasePage:
        """
        分配新页并加载到缓存，返回时已钉住且标记为脏页。
        """
        if len(self.cache) >= self.buffer_size:
            self._evict_page()
        page_id = self.page_store.allocate_page()
        page = page_cls(page_id, page_size=self.page_store.page_size, *args, **kwargs)
        page.is_dirty = True
        self.cache[page_id] = page
        self.dirty_pages.add(page_id)
        self.pin_count[page_id] = 1
        return page

    def _evict_page(self) -> None:
        """
        淘汰最久未使用且未被钉住的页（LRU）。
        """
        for evict_id, page in self.cache.items():
            if self.pin_count.get(evict_id, 0) == 0:
                if page.is_dirty:
                    self.flush_page(evict_id)
                self.cache.pop(evict_id, None)
                self.pin_count.pop(evict_id, None)
                self.dirty_pages.discard(evict_id)
                return
        logger.error(f"缓冲池已满且所有 {len(self.cache)} 页均被钉住")
        raise RuntimeError('No unpinned page to evict!')

    def flush_all(self) -> None:
        """
        将所有脏页写回存储。
        """
        for page_id in sorted(self.dirty_pages):
            self.flush_page(page_id)
