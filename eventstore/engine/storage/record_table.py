import struct
from bisect import bisect_left
from typing import Iterator, List, Optional, Tuple

from loguru import logger

from eventstore.errors import CorruptedStorageError, RecordTooLargeError
from eventstore.storage.btreepage import (
    NULL_PAGE_ID, BTreeInternalPage, BTreeLeafPage, BTreePageBase, load_btree_page,
)
from eventstore.storage.buffer import BufferPool
from eventstore.storage.memory_manager import VirtualMemory
from eventstore.storage.region_pager import RegionPager

U64_MAX = 0xFFFFFFFFFFFFFFFF


class RecordTable:
    """
    u64 -> 记录字节 的有序映射，以 B+ 树形式存放在一个虚拟区域中。

    区域内的页：1号页为分页头，2号页为元数据页（根页ID、条目数），其余为树节点页。
    删除采用惰性方式：只从叶子页移除条目，不做合并或借位，空叶子仍留在链表中。
    每次修改返回前，脏页和元数据都已写回文件。
    """
    META_STRUCT = struct.Struct('<3sBIQ')  # magic, version, root_page_id, length
    MAGIC = b'BTM'
    LAYOUT_VERSION = 1

    def __init__(self, memory: VirtualMemory, max_value_size: int = 1024,
                 page_size: int = 4096, buffer_size: int = 16):
        """
        :param memory: 独占的虚拟区域。
        :param max_value_size: 单条记录的最大字节数。
        :param page_size: 树节点页大小。
        :param buffer_size: 缓冲池容量（页）。
        """
        max_entry = BTreeLeafPage.entry_size(b'\x00' * max_value_size)
        if BTreeLeafPage.capacity(page_size) < 3 * max_entry:
            raise ValueError(
                f"page_size {page_size} is too small for records of {max_value_size} bytes")
        if buffer_size < 3:
            raise ValueError("buffer_size must be at least 3 pages")
        self.max_value_size = max_value_size
        self.pager = RegionPager(memory, page_size)
        self.bp = BufferPool(self.pager, buffer_size)
        if self.pager.total_pages == RegionPager.HEADER_PAGE_ID:
            self.meta_page_id = self.pager.allocate_page()
            self.root_page_id: Optional[int] = None
            self.length = 0
            self._save_meta()
            logger.debug(f"在区域 {memory.memory_id} 创建记录表")
        else:
            self.meta_page_id = RegionPager.HEADER_PAGE_ID + 1
            self._load_meta()
            logger.debug(f"加载区域 {memory.memory_id} 上的记录表，共 {self.length} 条")

    @classmethod
    def init(cls, memory: VirtualMemory, **kwargs) -> 'RecordTable':
        """打开或创建记录表，幂等。"""
        return cls(memory, **kwargs)

    # --- 元数据 ---
    def _load_meta(self) -> None:
        data = self.pager.read_page(self.meta_page_id)
        magic, version, root, length = self.META_STRUCT.unpack(data[:self.META_STRUCT.size])
        if magic != self.MAGIC or version != self.LAYOUT_VERSION:
            raise CorruptedStorageError("Record table metadata page is missing or corrupted.")
        self.root_page_id = None if root == NULL_PAGE_ID else root
        self.length = length

    def _save_meta(self) -> None:
        root = NULL_PAGE_ID if self.root_page_id is None else self.root_page_id
        meta = self.META_STRUCT.pack(self.MAGIC, self.LAYOUT_VERSION, root, self.length)
        self.pager.write_page(self.meta_page_id, meta.ljust(self.pager.page_size, b'\x00'))

    def _commit(self) -> None:
        # 先写节点页，再写指向它们的元数据
        self.bp.flush_all()
        self._save_meta()

    # --- 辅助 ---
    def _get_page(self, page_id: int) -> BTreePageBase:
        return self.bp.get_page(page_id, page_cls=load_btree_page)

    @staticmethod
    def _check_key(key: int) -> None:
        if not isinstance(key, int) or not 0 <= key <= U64_MAX:
            raise ValueError(f"Key must be a u64 integer, got {key!r}")

    def _find_path_to_leaf(self, key: int) -> List[int]:
        """
        查找key所在的叶子页，并返回路径（页面id列表）。
        :return: [root_id, ..., leaf_id]
        """
        path = []
        current_page_id = self.root_page_id
        while True:
            path.append(current_page_id)
            page = self._get_page(current_page_id)
            try:
                if isinstance(page, BTreeLeafPage):
                    return path
                current_page_id = page.child_for(key)
            finally:
                self.bp.unpin_page(page.page_id, is_dirty=False)

    # --- 查询 ---
    def get(self, key: int) -> Optional[bytes]:
        self._check_key(key)
        if self.root_page_id is None:
            return None
        leaf_id = self._find_path_to_leaf(key)[-1]
        leaf = self._get_page(leaf_id)
        try:
            return leaf.search(key)
        finally:
            self.bp.unpin_page(leaf_id, is_dirty=False)

    def contains_key(self, key: int) -> bool:
        return self.get(key) is not None

    def __contains__(self, key: int) -> bool:
        return self.contains_key(key)

    def __len__(self) -> int:
        return self.length

    def is_empty(self) -> bool:
        return self.length == 0

    # --- 修改 ---
    def insert(self, key: int, value: bytes) -> Optional[bytes]:
        """
        插入或覆盖一条记录，返回旧值（若有）。
        """
        self._check_key(key)
        value = bytes(value)
        if len(value) > self.max_value_size:
            raise RecordTooLargeError(len(value), self.max_value_size)
        if self.root_page_id is None:
            leaf = self.bp.new_page(page_cls=BTreeLeafPage)
            try:
                leaf.insert(key, value)
            finally:
                self.bp.unpin_page(leaf.page_id, is_dirty=True)
            self.root_page_id = leaf.page_id
            self.length = 1
            self._commit()
            return None

        path = self._find_path_to_leaf(key)
        leaf = self._get_page(path[-1])
        try:
            ok, old = leaf.insert(key, value)
            split = None if ok else self._split_leaf(leaf, key, value)
        finally:
            self.bp.unpin_page(leaf.page_id, is_dirty=True)
        if split is not None:
            self._insert_into_parents(path[:-1], *split)
        if old is None:
            self.length += 1
        self._commit()
        return old

    def _split_leaf(self, leaf: BTreeLeafPage, key: int, value: bytes) -> Tuple[int, int]:
        """
        按字节量把叶子页（连同新条目）一分为二。
        :return: (上推key, 新右兄弟页id)
        """
        entries = leaf.entries()
        idx = bisect_left([k for k, _ in entries], key)
        if idx < len(entries) and entries[idx][0] == key:
            entries[idx] = (key, value)
        else:
            entries.insert(idx, (key, value))
        split_at = _split_point([BTreeLeafPage.entry_size(v) for _, v in entries])
        right = self.bp.new_page(page_cls=BTreeLeafPage)
        try:
            right.next_leaf_page_id = leaf.next_leaf_page_id
            right.rebuild(entries[split_at:])
            leaf.next_leaf_page_id = right.page_id
            leaf.rebuild(entries[:split_at])
            up_key = entries[split_at][0]
            logger.debug(f"叶子页 {leaf.page_id} 分裂，新页 {right.page_id}，上推键 {up_key}")
            return up_key, right.page_id
        finally:
            self.bp.unpin_page(right.page_id, is_dirty=True)

    def _insert_into_parents(self, path: List[int], up_key: int, new_child_id: int) -> None:
        """
        把分裂产生的分隔键逐层插入父节点，必要时继续分裂并提升新根。
        :param path: 从根到被分裂页的父节点的页面id列表
        """
        for parent_id in reversed(path):
            parent = self._get_page(parent_id)
            try:
                if parent.insert(up_key, new_child_id):
                    return
                entries = parent.entries()
                idx = bisect_left([k for k, _ in entries], up_key)
                entries.insert(idx, (up_key, new_child_id))
                mid = len(entries) // 2
                mid_key, mid_child = entries[mid]
                right = self.bp.new_page(page_cls=BTreeInternalPage)
                try:
                    right.rebuild(mid_child, entries[mid + 1:])
                    parent.rebuild(parent.leftmost_child_page_id, entries[:mid])
                    logger.debug(f"内部页 {parent_id} 分裂，新页 {right.page_id}，上推键 {mid_key}")
                    up_key, new_child_id = mid_key, right.page_id
                finally:
                    self.bp.unpin_page(right.page_id, is_dirty=True)
            finally:
                self.bp.unpin_page(parent_id, is_dirty=True)
        # 根节点分裂，创建新根
        new_root = self.bp.new_page(page_cls=BTreeInternalPage)
        try:
            new_root.rebuild(self.root_page_id, [(up_key, new_child_id)])
        finally:
            self.bp.unpin_page(new_root.page_id, is_dirty=True)
        logger.debug(f"树高增长，新根页 {new_root.page_id}")
        self.root_page_id = new_root.page_id

    def remove(self, key: int) -> Optional[bytes]:
        """删除一条记录，返回旧值；不存在时返回 None。"""
        self._check_key(key)
        if self.root_page_id is None:
            return None
        leaf_id = self._find_path_to_leaf(key)[-1]
        leaf = self._get_page(leaf_id)
        old = None
        try:
            old = leaf.delete(key)
        finally:
            self.bp.unpin_page(leaf_id, is_dirty=old is not None)
        if old is not None:
            self.length -= 1
            self._commit()
        return old

    # --- 有序遍历 ---
    def _leftmost_leaf(self) -> int:
        current_page_id = self.root_page_id
        while True:
            page = self._get_page(current_page_id)
            try:
                if isinstance(page, BTreeLeafPage):
                    return current_page_id
                current_page_id = page.leftmost_child_page_id
            finally:
                self.bp.unpin_page(page.page_id, is_dirty=False)

    def items(self, start: Optional[int] = None, end: Optional[int] = None) -> Iterator[Tuple[int, bytes]]:
        """
        按 key 升序遍历 [start, end) 内的记录。
        """
        if self.root_page_id is None:
            return
        if start is None:
            leaf_id = self._leftmost_leaf()
        else:
            self._check_key(start)
            leaf_id = self._find_path_to_leaf(start)[-1]
        while leaf_id != NULL_PAGE_ID:
            leaf = self._get_page(leaf_id)
            try:
                entries = leaf.entries()
                next_leaf_id = leaf.next_leaf_page_id
            finally:
                self.bp.unpin_page(leaf_id, is_dirty=False)
            for key, value in entries:
                if start is not None and key < start:
                    continue
                if end is not None and key >= end:
                    return
                yield key, value
            leaf_id = next_leaf_id

    def keys(self) -> Iterator[int]:
        for key, _ in self.items():
            yield key

    def __iter__(self) -> Iterator[int]:
        return self.keys()

    def first_key_value(self) -> Optional[Tuple[int, bytes]]:
        return next(self.items(), None)

    def last_key_value(self) -> Optional[Tuple[int, bytes]]:
        if self.root_page_id is None:
            return None
        return self._last_in_subtree(self.root_page_id)

    def _last_in_subtree(self, page_id: int) -> Optional[Tuple[int, bytes]]:
        # 惰性删除会留下空叶子，需要从右向左回溯
        page = self._get_page(page_id)
        try:
            if isinstance(page, BTreeLeafPage):
                if page.entry_count == 0:
                    return None
                idx = page.entry_count - 1
                return page.key_at(idx), page.value_at(idx)
            children = page.children()
        finally:
            self.bp.unpin_page(page_id, is_dirty=False)
        for child_id in reversed(children):
            found = self._last_in_subtree(child_id)
            if found is not None:
                return found
        return None


def _split_point(sizes: List[int]) -> int:
    """
    返回分裂位置，使左半部分刚好达到总字节量的一半。两侧都至少保留一个条目。
    """
    total = sum(sizes)
    acc = 0
    for i, size in enumerate(sizes[:-1]):
        acc += size
        if acc * 2 >= total:
            return i + 1
    return len(sizes) - 1
