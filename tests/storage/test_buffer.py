import pytest
from eventstore.storage.buffer import BufferPool
from eventstore.storage.page import BasePage

class DummyPageStore:
    def __init__(self, page_size=128):
        self.page_size = page_size
        self.pages = {}
        self.next_id = 1
        self.writes = []
    def read_page(self, page_id):
        return self.pages.get(page_id, b'\x00'*self.page_size)
    def write_page(self, page_id, data):
        self.writes.append(page_id)
        self.pages[page_id] = data
    def allocate_page(self):
        pid = self.next_id
        self.next_id += 1
        self.pages[pid] = b'\x00'*self.page_size
        return pid

def test_bufferpool_basic():
    store = DummyPageStore(page_size=128)
    bp = BufferPool(store, buffer_size=2)
    # new_page
    page = bp.new_page()
    assert isinstance(page, BasePage)
    pid = page.page_id
    assert bp.pin_count[pid] == 1
    # get_page
    page2 = bp.get_page(pid)
    assert page2 is page
    assert bp.pin_count[pid] == 2
    page.data[:3] = b'abc'
    # unpin
    bp.unpin_page(pid, is_dirty=True)
    bp.unpin_page(pid, is_dirty=False)
    assert pid in bp.dirty_pages
    assert bp.pin_count[pid] == 0
    # flush_page
    bp.flush_page(pid)
    assert pid not in bp.dirty_pages
    assert store.pages[pid][:3] == b'abc'

def test_bufferpool_lru_evict():
    store = DummyPageStore(page_size=128)
    bp = BufferPool(store, buffer_size=2)
    p1 = bp.new_page()
    p2 = bp.new_page()
    p1.data[0] = 7
    bp.unpin_page(p1.page_id, is_dirty=True)
    bp.unpin_page(p2.page_id, is_dirty=False)
    p3 = bp.new_page()
    # p1 最久未使用，应被淘汰并写回
    assert len(bp.cache) == 2
    assert p1.page_id not in bp.cache
    assert store.pages[p1.page_id][0] == 7
    assert bp.pin_count[p3.page_id] == 1
    # 再次读取从存储加载
    again = bp.get_page(p1.page_id)
    assert again is not p1
    assert again.data[0] == 7

def test_bufferpool_all_pinned():
    store = DummyPageStore(page_size=128)
    bp = BufferPool(store, buffer_size=2)
    bp.new_page()
    bp.new_page()
    with pytest.raises(RuntimeError):
        bp.new_page()

def test_bufferpool_flush_all():
    store = DummyPageStore(page_size=128)
    bp = BufferPool(store, buffer_size=2)
    p1 = bp.new_page()
    p2 = bp.new_page()
    bp.unpin_page(p1.page_id, is_dirty=True)
    bp.unpin_page(p2.page_id, is_dirty=True)
    bp.flush_all()
    assert not bp.dirty_pages
    assert sorted(store.writes) == [p1.page_id, p2.page_id]
    # 干净页不会重复写回
    bp.flush_all()
    assert len(store.writes) == 2

def test_bufferpool_custom_page_factory():
    store = DummyPageStore(page_size=64)
    created = []
    def factory(page_id, data=None, page_size=4096):
        created.append(page_id)
        return BasePage(page_id, data=data, page_size=page_size)
    bp = BufferPool(store, buffer_size=1)
    page = bp.get_page(5, page_cls=factory)
    assert created == [5]
    assert page.page_size == 64

def test_base_page_size_check():
    with pytest.raises(ValueError):
        BasePage(1, data=b'abc', page_size=64)
    page = BasePage(1, page_size=64)
    assert page.to_bytes() == b'\x00' * 64
    assert not page.is_dirty
    page.mark_dirty()
    assert page.is_dirty
