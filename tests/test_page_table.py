import pytest

from multipaging.entries.x86_64 import X64PTE
from multipaging.flags import MappingFlags
from multipaging.metadata import X64PagingMetaData
from multipaging.page_table import (
    PageTable64,
    a64_page_table,
    la64_page_table,
    sv39_page_table,
    sv48_page_table,
    x64_page_table,
)
from multipaging.paging import (
    AlreadyMappedError,
    FrameMemory,
    MappedToHugePageError,
    NoMemoryError,
    NotAlignedError,
    NotMappedError,
    PageSize,
)

BASE = 0x10_0000
RW = MappingFlags.READ | MappingFlags.WRITE
VADDR = 0x4000_0000
TARGET = 0x8000_0000

ALL = [x64_page_table, a64_page_table, la64_page_table, sv39_page_table, sv48_page_table]
FREEING = [x64_page_table, a64_page_table, sv39_page_table, sv48_page_table]


def memory(frames=64):
    return FrameMemory(BASE, frames)


def test_root_is_first_frame():
    mem = memory()
    pt = x64_page_table(mem)
    assert pt.root_paddr == BASE
    assert mem.allocated_frames == frozenset({BASE})


def test_no_frame_for_root():
    with pytest.raises(NoMemoryError):
        x64_page_table(memory(0))


def test_no_frame_for_intermediate_table():
    pt = x64_page_table(memory(1))
    with pytest.raises(NoMemoryError):
        pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)


@pytest.mark.parametrize("factory", ALL)
def test_map_and_query_4k(factory):
    pt = factory(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW).ignore()
    assert pt.query(VADDR) == (TARGET, RW, PageSize.SIZE_4K)
    assert pt.query(VADDR + 0x123)[0] == TARGET + 0x123


@pytest.mark.parametrize("factory", ALL)
def test_query_unmapped(factory):
    pt = factory(memory())
    with pytest.raises(NotMappedError):
        pt.query(VADDR)


@pytest.mark.parametrize("factory", ALL)
def test_map_twice(factory):
    pt = factory(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    with pytest.raises(AlreadyMappedError):
        pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)


def test_map_aligns_target_down():
    pt = x64_page_table(memory())
    pt.map(VADDR, TARGET + 0x1234, PageSize.SIZE_2M, RW)
    paddr, _, size = pt.query(VADDR)
    assert paddr == TARGET
    assert size is PageSize.SIZE_2M


def test_map_below_huge_page():
    pt = x64_page_table(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_2M, RW)
    with pytest.raises(MappedToHugePageError):
        pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)


@pytest.mark.parametrize("factory", ALL)
def test_unmap(factory):
    pt = factory(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    paddr, size, tlb = pt.unmap(VADDR)
    assert (paddr, size, tlb.vaddr) == (TARGET, PageSize.SIZE_4K, VADDR)
    with pytest.raises(NotMappedError):
        pt.query(VADDR)
    with pytest.raises(NotMappedError):
        pt.unmap(VADDR)


@pytest.mark.parametrize("factory", ALL)
def test_protect(factory):
    pt = factory(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    size, _ = pt.protect(VADDR, MappingFlags.READ)
    assert size is PageSize.SIZE_4K
    assert pt.query(VADDR) == (TARGET, MappingFlags.READ, PageSize.SIZE_4K)


def test_protect_unmapped():
    pt = x64_page_table(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    with pytest.raises(NotMappedError):
        pt.protect(VADDR + PageSize.SIZE_4K, RW)


@pytest.mark.parametrize("factory", ALL)
def test_remap(factory):
    pt = factory(memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    other = TARGET + PageSize.SIZE_2M
    size, _ = pt.remap(VADDR, other, MappingFlags.READ)
    assert size is PageSize.SIZE_4K
    assert pt.query(VADDR) == (other, MappingFlags.READ, PageSize.SIZE_4K)


def test_remap_without_tables():
    pt = x64_page_table(memory())
    with pytest.raises(NotMappedError):
        pt.remap(VADDR, TARGET, RW)


@pytest.mark.parametrize("factory", ALL)
def test_map_region_uses_huge_pages(factory):
    pt = factory(memory())
    size = PageSize.SIZE_1G + PageSize.SIZE_2M + PageSize.SIZE_4K
    pt.map_region(VADDR, lambda v: v, size, RW, True, False).ignore()
    assert pt.query(VADDR) == (VADDR, RW, PageSize.SIZE_1G)
    after_1g = VADDR + PageSize.SIZE_1G
    assert pt.query(after_1g) == (after_1g, RW, PageSize.SIZE_2M)
    after_2m = after_1g + PageSize.SIZE_2M
    assert pt.query(after_2m) == (after_2m, RW, PageSize.SIZE_4K)
    with pytest.raises(NotMappedError):
        pt.query(after_2m + PageSize.SIZE_4K)


def test_map_region_without_huge_pages():
    pt = x64_page_table(memory())
    pt.map_region(VADDR, lambda v: v - VADDR + TARGET, 2 * PageSize.SIZE_4K, RW)
    assert pt.query(VADDR + PageSize.SIZE_4K) == (
        TARGET + PageSize.SIZE_4K,
        RW,
        PageSize.SIZE_4K,
    )


def test_map_region_not_aligned():
    pt = x64_page_table(memory())
    with pytest.raises(NotAlignedError):
        pt.map_region(VADDR + 1, lambda v: v, PageSize.SIZE_4K, RW)
    with pytest.raises(NotAlignedError):
        pt.map_region(VADDR, lambda v: v, PageSize.SIZE_4K + 1, RW)


def test_map_region_overlap():
    pt = x64_page_table(memory())
    pt.map(VADDR + PageSize.SIZE_4K, TARGET, PageSize.SIZE_4K, RW)
    with pytest.raises(AlreadyMappedError):
        pt.map_region(VADDR, lambda v: v, 2 * PageSize.SIZE_4K, RW)
    assert pt.query(VADDR)[0] == VADDR


def test_unmap_region():
    pt = x64_page_table(memory())
    size = PageSize.SIZE_1G + PageSize.SIZE_2M
    pt.map_region(VADDR, lambda v: v, size, RW, True, False)
    pt.unmap_region(VADDR, size).ignore()
    for vaddr in (VADDR, VADDR + PageSize.SIZE_1G):
        with pytest.raises(NotMappedError):
            pt.query(vaddr)


def test_protect_region():
    pt = x64_page_table(memory())
    size = 3 * PageSize.SIZE_4K
    pt.map_region(VADDR, lambda v: v, size, RW)
    pt.protect_region(VADDR, size, MappingFlags.READ)
    for offset in range(0, size, PageSize.SIZE_4K):
        assert pt.query(VADDR + offset)[1] == MappingFlags.READ


def test_flushes_are_reported():
    flushed = []
    pt = PageTable64(X64PagingMetaData(on_flush=flushed.append), X64PTE, memory())
    pt.map(VADDR, TARGET, PageSize.SIZE_4K, RW).flush()
    assert flushed == [VADDR]
    flushed.clear()
    pt.map_region(
        VADDR + PageSize.SIZE_2M, lambda v: v, 2 * PageSize.SIZE_4K, RW, False, True
    ).flush_all()
    second = VADDR + PageSize.SIZE_2M + PageSize.SIZE_4K
    assert flushed == [
        VADDR + PageSize.SIZE_2M,
        VADDR + PageSize.SIZE_2M,
        second,
        second,
        None,
    ]


def test_unmap_region_flushes_each_page():
    flushed = []
    pt = PageTable64(X64PagingMetaData(on_flush=flushed.append), X64PTE, memory())
    pt.map_region(VADDR, lambda v: v, 2 * PageSize.SIZE_4K, RW)
    pt.unmap_region(VADDR, 2 * PageSize.SIZE_4K, True).ignore()
    assert flushed == [VADDR, VADDR + PageSize.SIZE_4K]


def test_walk_visits_path():
    pt = x64_page_table(memory())
    pt.map(PageSize.SIZE_4K, TARGET, PageSize.SIZE_4K, RW)
    pre, post = [], []
    pt.walk(
        512,
        lambda level, idx, vaddr, entry: pre.append((level, idx, vaddr)),
        lambda level, idx, vaddr, entry: post.append((level, idx, vaddr)),
    )
    assert pre == [(0, 0, 0), (1, 0, 0), (2, 0, 0), (3, 1, PageSize.SIZE_4K)]
    assert post == list(reversed(pre))


def test_walk_limit():
    pt = x64_page_table(memory())
    pt.map(PageSize.SIZE_4K, TARGET, PageSize.SIZE_4K, RW)
    pt.map(2 * PageSize.SIZE_4K, TARGET, PageSize.SIZE_4K, RW)
    seen = []
    pt.walk(1, lambda level, idx, vaddr, entry: seen.append((level, vaddr, entry.paddr())))
    assert seen[-1] == (3, PageSize.SIZE_4K, TARGET)
    assert len(seen) == 4


def test_copy_and_clear_range():
    mem = memory()
    src = x64_page_table(mem)
    dst = x64_page_table(mem)
    src.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    dst.copy_from(src, VADDR, PageSize.SIZE_4K)
    assert dst.query(VADDR) == (TARGET, RW, PageSize.SIZE_4K)
    dst.clear_copy_range(VADDR, PageSize.SIZE_4K)
    with pytest.raises(NotMappedError):
        dst.query(VADDR)
    assert src.query(VADDR)[0] == TARGET
    dst.close()
    src.close()
    assert mem.allocated_frames == frozenset()


def test_copy_of_empty_range_is_noop():
    mem = memory()
    src = x64_page_table(mem)
    dst = x64_page_table(mem)
    src.map(VADDR, TARGET, PageSize.SIZE_4K, RW)
    dst.copy_from(src, VADDR, 0)
    with pytest.raises(NotMappedError):
        dst.query(VADDR)


@pytest.mark.parametrize("factory", FREEING)
def test_close_frees_all_frames(factory):
    mem = memory()
    with factory(mem) as pt:
        pt.map_region(VADDR, lambda v: v, PageSize.SIZE_2M + PageSize.SIZE_4K, RW, True, False)
        pt.map(0, TARGET, PageSize.SIZE_4K, RW)
        assert len(mem.allocated_frames) > 1
    assert mem.allocated_frames == frozenset()


def test_close_is_idempotent():
    mem = memory()
    pt = x64_page_table(mem)
    pt.close()
    pt.close()
    assert mem.allocated_frames == frozenset()


def test_sv39_top_level_range_uses_p3():
    mem = memory()
    src = sv39_page_table(mem)
    dst = sv39_page_table(mem)
    src.map(VADDR, TARGET, PageSize.SIZE_1G, RW)
    dst.copy_from(src, VADDR, PageSize.SIZE_1G)
    assert dst.query(VADDR + 0x123) == (TARGET + 0x123, RW, PageSize.SIZE_1G)