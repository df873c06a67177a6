import pytest
from eventstore.errors import CorruptedStorageError
from eventstore.storage.btreepage import (
    NULL_PAGE_ID, BTreeInternalPage, BTreeLeafPage, load_btree_page,
)

PAGE_SIZE = 256

def test_leaf_page_insert_search_delete():
    page = BTreeLeafPage(page_id=1, page_size=PAGE_SIZE)
    assert page.next_leaf_page_id == NULL_PAGE_ID
    for k in [5, 1, 9, 3, 7]:
        ok, old = page.insert(k, b'v%d' % k)
        assert ok and old is None
    # 槽按 key 升序
    assert [k for k, _ in page.entries()] == [1, 3, 5, 7, 9]
    assert page.search(7) == b'v7'
    assert page.search(4) is None
    # 覆盖
    ok, old = page.insert(7, b'seven')
    assert ok and old == b'v7'
    assert page.search(7) == b'seven'
    assert page.entry_count == 5
    # 删除
    assert page.delete(3) == b'v3'
    assert page.delete(3) is None
    assert page.search(3) is None
    assert [k for k, _ in page.entries()] == [1, 5, 7, 9]

def test_leaf_page_full_insert_leaves_page_unchanged():
    page = BTreeLeafPage(page_id=2, page_size=PAGE_SIZE)
    value = b'x' * 10
    inserted = 0
    while True:
        ok, _ = page.insert(inserted, value)
        if not ok:
            break
        inserted += 1
    assert inserted == BTreeLeafPage.capacity(PAGE_SIZE) // BTreeLeafPage.entry_size(value)
    before = page.to_bytes()
    # 覆盖成更大的值同样放不下
    ok, old = page.insert(0, b'y' * 40)
    assert not ok and old == value
    assert page.to_bytes() == before
    assert page.search(0) == value

def test_leaf_page_compact_reclaims_deleted_space():
    page = BTreeLeafPage(page_id=3, page_size=PAGE_SIZE)
    value = b'x' * 10
    n = 0
    while page.insert(n, value)[0]:
        n += 1
    for k in range(0, n, 2):
        page.delete(k)
    # 连续空闲空间不足，但整理碎片后可以放下
    big = b'z' * 30
    assert page.get_free_space() < BTreeLeafPage.entry_size(big)
    ok, _ = page.insert(0, big)
    assert ok
    assert page.search(0) == big
    assert page.search(1) == value

def test_leaf_page_rebuild_and_reload():
    page = BTreeLeafPage(page_id=4, page_size=PAGE_SIZE)
    page.insert(1, b'a')
    page.next_leaf_page_id = 9
    page.rebuild([(10, b'ten'), (20, b'twenty')])
    assert page.entries() == [(10, b'ten'), (20, b'twenty')]
    loaded = load_btree_page(4, page.to_bytes(), page_size=PAGE_SIZE)
    assert isinstance(loaded, BTreeLeafPage)
    assert loaded.next_leaf_page_id == 9
    assert loaded.search(20) == b'twenty'

def test_internal_page_child_for():
    page = BTreeInternalPage(page_id=10, page_size=PAGE_SIZE)
    page.rebuild(100, [(10, 101), (20, 102)])
    assert page.child_for(0) == 100
    assert page.child_for(9) == 100
    assert page.child_for(10) == 101
    assert page.child_for(15) == 101
    assert page.child_for(20) == 102
    assert page.child_for(2**64 - 1) == 102
    assert page.children() == [100, 101, 102]
    assert page.insert(15, 103)
    assert page.entries() == [(10, 101), (15, 103), (20, 102)]
    with pytest.raises(CorruptedStorageError):
        page.insert(15, 104)

def test_internal_page_fills_up_and_reloads():
    page = BTreeInternalPage(page_id=11, page_size=PAGE_SIZE)
    page.leftmost_child_page_id = 999
    n = 0
    while page.insert(n * 10, 1000 + n):
        n += 1
    assert n > 0
    loaded = load_btree_page(11, page.to_bytes(), page_size=PAGE_SIZE)
    assert isinstance(loaded, BTreeInternalPage)
    assert loaded.leftmost_child_page_id == 999
    assert loaded.entry_count == n
    assert loaded.child_for(15) == 1001

def test_page_type_checks():
    leaf = BTreeLeafPage(page_id=1, page_size=PAGE_SIZE)
    with pytest.raises(CorruptedStorageError):
        BTreeInternalPage(1, data=leaf.to_bytes(), page_size=PAGE_SIZE)
    with pytest.raises(CorruptedStorageError):
        load_btree_page(1, b'\x00' * PAGE_SIZE, page_size=PAGE_SIZE)
    with pytest.raises(ValueError):
        BTreeLeafPage(1, page_size=70000)
