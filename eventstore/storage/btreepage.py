"""
B+树页面实现（内部页与叶子页）。

页面结构（槽式页）：
- 页头位于页首，数据区从页头之后向后增长
- 槽数组从页尾向前增长，每个槽记录 (offset, length)，槽按 key 升序排列
- key 固定为 u64（小端 8 字节）

叶子页条目：key + value（变长字节串）
内部页条目：key + child_page_id；页头额外保存 leftmost_child_page_id，
第 i 个条目的子树包含所有 >= key_i 且 < key_{i+1} 的键。
"""

import struct
from typing import List, Optional, Tuple

from eventstore.errors import CorruptedStorageError
from eventstore.storage.page import BasePage

# B+树页面类型常量
BTREE_INTERNAL = 1
BTREE_LEAF = 2
NULL_PAGE_ID = 0xFFFFFFFF

KEY_STRUCT = struct.Struct('<Q')
CHILD_STRUCT = struct.Struct('<I')


class BTreePageBase(BasePage):
    """
    B+树页面基类，包含通用页头、槽数组、数据区管理。
    """
    # 页头格式: type(1) free_ptr(4) entry_count(4) next_leaf(4)
    HEADER_STRUCT = struct.Struct('<BIII')
    HEADER_SIZE = HEADER_STRUCT.size
    SLOT_STRUCT = struct.Struct('<HH')  # offset(2) length(2)
    SLOT_SIZE = SLOT_STRUCT.size
    PAGE_TYPE = 0

    def __init__(self, page_id: int, data: Optional[bytes] = None, page_size: int = 4096):
        if page_size > 0xFFFF:
            raise ValueError("B+tree pages address slots with 16-bit offsets; page_size must be <= 65535")
        super().__init__(page_id, data, page_size)
        if data is not None:
            self._load_header()
            if self.page_type != self.PAGE_TYPE:
                raise CorruptedStorageError(
                    f"Page {page_id} has type {self.page_type}, expected {self.PAGE_TYPE}")
        else:
            self._init_header()

    def _init_header(self) -> None:
        self.page_type = self.PAGE_TYPE
        self.free_space_pointer = self.HEADER_SIZE
        self.entry_count = 0
        self.next_leaf_page_id = NULL_PAGE_ID
        self._save_header()

    def _load_header(self) -> None:
        (self.page_type, self.free_space_pointer, self.entry_count,
         self.next_leaf_page_id) = self.HEADER_STRUCT.unpack(self.data[:self.HEADER_SIZE])

    def _save_header(self) -> None:
        self.data[:self.HEADER_SIZE] = self.HEADER_STRUCT.pack(
            self.page_type, self.free_space_pointer, self.entry_count, self.next_leaf_page_id)
        self.is_dirty = True

    @classmethod
    def capacity(cls, page_size: int) -> int:
        """空页可容纳的 条目+槽 总字节数。"""
        return page_size - cls.HEADER_SIZE

    def get_free_space(self) -> int:
        """返回数据区与槽数组之间连续的空闲字节数"""
        slot_array_start = self.page_size - self.entry_count * self.SLOT_SIZE
        return slot_array_start - self.free_space_pointer

    def _reclaimable_space(self) -> int:
        """整理碎片后可得到的空闲字节数"""
        used = sum(self._read_slot(i)[1] for i in range(self.entry_count))
        return self.capacity(self.page_size) - used - self.entry_count * self.SLOT_SIZE

    def _get_slot_offset(self, idx: int) -> int:
        """返回第idx个槽的起始偏移（在页面中的位置）"""
        return self.page_size - (idx + 1) * self.SLOT_SIZE

    def _read_slot(self, idx: int) -> Tuple[int, int]:
        """读取第idx个槽，返回(offset, length)"""
        slot_off = self._get_slot_offset(idx)
        return self.SLOT_STRUCT.unpack(self.data[slot_off:slot_off + self.SLOT_SIZE])

    def _write_slot(self, idx: int, data_offset: int, data_len: int) -> None:
        slot_off = self._get_slot_offset(idx)
        self.data[slot_off:slot_off + self.SLOT_SIZE] = self.SLOT_STRUCT.pack(data_offset, data_len)

    def _entry(self, idx: int) -> bytes:
        off, length = self._read_slot(idx)
        if off < self.HEADER_SIZE or off + length > self.page_size:
            raise CorruptedStorageError(f"Slot {idx} of page {self.page_id} points outside the page")
        return bytes(self.data[off:off + length])

    def key_at(self, idx: int) -> int:
        off, _ = self._read_slot(idx)
        return KEY_STRUCT.unpack_from(self.data, off)[0]

    def _find_slot_for_key(self, key: int) -> Tuple[int, bool]:
        """
        二分查找第一个 >= key 的槽。
        :return: (idx, 是否精确匹配)
        """
        low, high = 0, self.entry_count - 1
        while low <= high:
            mid = (low + high) // 2
            mid_key = self.key_at(mid)
            if mid_key == key:
                return mid, True
            elif mid_key < key:
                low = mid + 1
            else:
                high = mid - 1
        return low, False

    def _compact(self) -> None:
        """
        整理页面碎片，按槽顺序紧凑存储所有数据。
        """
        entries = [self._entry(i) for i in range(self.entry_count)]
        self.free_space_pointer = self.HEADER_SIZE
        for i, entry in enumerate(entries):
            off = self.free_space_pointer
            self.data[off:off + len(entry)] = entry
            self._write_slot(i, off, len(entry))
            self.free_space_pointer += len(entry)
        self._save_header()

    def _insert_entry(self, idx: int, entry_bytes: bytes) -> bool:
        """
        在槽位idx处插入一个条目，空间不足时先整理碎片。
        :return: False 表示整理后仍放不下，需要分裂
        """
        entry_len = len(entry_bytes)
        if self.get_free_space() < entry_len + self.SLOT_SIZE:
            if self._reclaimable_space() < entry_len + self.SLOT_SIZE:
                return False
            self._compact()
        data_off = self.free_space_pointer
        self.data[data_off:data_off + entry_len] = entry_bytes
        # 槽数组后移，为新槽腾出空间
        for i in range(self.entry_count, idx, -1):
            src_off = self._get_slot_offset(i - 1)
            dst_off = self._get_slot_offset(i)
            self.data[dst_off:dst_off + self.SLOT_SIZE] = self.data[src_off:src_off + self.SLOT_SIZE]
        self._write_slot(idx, data_off, entry_len)
        self.entry_count += 1
        self.free_space_pointer += entry_len
        self._save_header()
        return True

    def _delete_slot(self, idx: int) -> None:
        """
        删除第idx个槽并前移后续槽；数据区不动，留给 _compact 回收。
        """
        for i in range(idx, self.entry_count - 1):
            src_off = self._get_slot_offset(i + 1)
            dst_off = self._get_slot_offset(i)
            self.data[dst_off:dst_off + self.SLOT_SIZE] = self.data[src_off:src_off + self.SLOT_SIZE]
        self.entry_count -= 1
        self._save_header()

    def _reset(self) -> None:
        self.data[self.HEADER_SIZE:] = bytes(self.page_size - self.HEADER_SIZE)
        self.free_space_pointer = self.HEADER_SIZE
        self.entry_count = 0
        self._save_header()


class BTreeLeafPage(BTreePageBase):
    """
    B+树叶子节点页，存储 key 和记录字节，叶子之间以 next_leaf_page_id 串成链表。
    """
    PAGE_TYPE = BTREE_LEAF

    @staticmethod
    def entry_size(value: bytes) -> int:
        """一个条目连同其槽占用的字节数"""
        return KEY_STRUCT.size + len(value) + BTreePageBase.SLOT_SIZE

    def value_at(self, idx: int) -> bytes:
        return self._entry(idx)[KEY_STRUCT.size:]

    def search(self, key: int) -> Optional[bytes]:
        idx, found = self._find_slot_for_key(key)
        if found:
            return self.value_at(idx)
        return None

    def insert(self, key: int, value: bytes) -> Tuple[bool, Optional[bytes]]:
        """
        插入或覆盖 (key, value)。
        :return: (是否写入, 旧值)。写入失败时页面保持不变，调用方需要分裂。
        """
        idx, found = self._find_slot_for_key(key)
        entry_bytes = KEY_STRUCT.pack(key) + value
        old = None
        if found:
            old = self.value_at(idx)
            old_len = KEY_STRUCT.size + len(old)
            if self._reclaimable_space() + old_len < len(entry_bytes):
                return False, old
            self._delete_slot(idx)
        ok = self._insert_entry(idx, entry_bytes)
        return ok, old

    def delete(self, key: int) -> Optional[bytes]:
        """删除 key，返回旧值；不存在时返回 None。"""
        idx, found = self._find_slot_for_key(key)
        if not found:
            return None
        old = self.value_at(idx)
        self._delete_slot(idx)
        return old

    def entries(self) -> List[Tuple[int, bytes]]:
        result = []
        for i in range(self.entry_count):
            entry = self._entry(i)
            result.append((KEY_STRUCT.unpack_from(entry)[0], entry[KEY_STRUCT.size:]))
        return result

    def rebuild(self, entries: List[Tuple[int, bytes]]) -> None:
        """用有序条目重写整页（分裂时使用），保留 next_leaf_page_id。"""
        self._reset()
        for idx, (key, value) in enumerate(entries):
            if not self._insert_entry(idx, KEY_STRUCT.pack(key) + value):
                raise CorruptedStorageError(f"Leaf page {self.page_id} cannot hold {len(entries)} entries")

    def __repr__(self) -> str:
        return (f"<BTreeLeafPage id={self.page_id} entries={self.entry_count} "
                f"next={self.next_leaf_page_id} dirty={self.is_dirty}>")


class BTreeInternalPage(BTreePageBase):
    """
    B+树内部节点页，存储N个key和N+1个子节点指针。
    采用页头leftmost_child_page_id + 槽数组(key, child_page_id)的结构。
    """
    # 页头格式: type(1) free_ptr(4) entry_count(4) next_leaf(4) leftmost_child(4)
    HEADER_STRUCT = struct.Struct('<BIIII')
    HEADER_SIZE = HEADER_STRUCT.size
    PAGE_TYPE = BTREE_INTERNAL

    def _init_header(self) -> None:
        self.leftmost_child_page_id = NULL_PAGE_ID
        super()._init_header()

    def _load_header(self) -> None:
        (self.page_type, self.free_space_pointer, self.entry_count,
         self.next_leaf_page_id, self.leftmost_child_page_id) = self.HEADER_STRUCT.unpack(self.data[:self.HEADER_SIZE])

    def _save_header(self) -> None:
        self.data[:self.HEADER_SIZE] = self.HEADER_STRUCT.pack(
            self.page_type, self.free_space_pointer, self.entry_count,
            self.next_leaf_page_id, self.leftmost_child_page_id)
        self.is_dirty = True

    def child_at(self, idx: int) -> int:
        off, _ = self._read_slot(idx)
        return CHILD_STRUCT.unpack_from(self.data, off + KEY_STRUCT.size)[0]

    def child_for(self, key: int) -> int:
        """
        在内部节点中查找key应该走的子指针。
        """
        idx, found = self._find_slot_for_key(key)
        if found:
            return self.child_at(idx)
        if idx == 0:
            return self.leftmost_child_page_id
        return self.child_at(idx - 1)

    def insert(self, key: int, child_page_id: int) -> bool:
        """
        插入分隔键 (key, child_page_id)。
        :return: True表示插入成功，False表示空间不足需分裂
        """
        idx, found = self._find_slot_for_key(key)
        if found:
            raise CorruptedStorageError(f"Separator {key} already present in page {self.page_id}")
        return self._insert_entry(idx, KEY_STRUCT.pack(key) + CHILD_STRUCT.pack(child_page_id))

    def entries(self) -> List[Tuple[int, int]]:
        return [(self.key_at(i), self.child_at(i)) for i in range(self.entry_count)]

    def children(self) -> List[int]:
        return [self.leftmost_child_page_id] + [self.child_at(i) for i in range(self.entry_count)]

    def rebuild(self, leftmost_child_page_id: int, entries: List[Tuple[int, int]]) -> None:
        self.leftmost_child_page_id = leftmost_child_page_id
        self._reset()
        for idx, (key, child) in enumerate(entries):
            if not self._insert_entry(idx, KEY_STRUCT.pack(key) + CHILD_STRUCT.pack(child)):
                raise CorruptedStorageError(f"Internal page {self.page_id} cannot hold {len(entries)} entries")

    def __repr__(self) -> str:
        return (f"<BTreeInternalPage id={self.page_id} entries={self.entry_count} "
                f"leftmost={self.leftmost_child_page_id} dirty={self.is_dirty}>")


def load_btree_page(page_id: int, data: bytes, page_size: int = 4096) -> BTreePageBase:
    """根据页头类型字节构造对应的B+树页面对象。"""
    page_type = data[0]
    if page_type == BTREE_LEAF:
        return BTreeLeafPage(page_id, data=data, page_size=page_size)
    elif page_type == BTREE_INTERNAL:
        return BTreeInternalPage(page_id, data=data, page_size=page_size)
    raise CorruptedStorageError(f"未知的页面类型: {page_type}")
