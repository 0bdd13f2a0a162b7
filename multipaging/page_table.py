"""A generic multi-level page table for 64-bit platforms."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from multipaging.entries.aarch64 import A64PTE
from multipaging.entries.loongarch64 import LA64PTE
from multipaging.entries.riscv import Rv64PTE
from multipaging.entries.x86_64 import X64PTE
from multipaging.flags import GenericPTE, MappingFlags
from multipaging.metadata import (
    A64PagingMetaData,
    LA64MetaData,
    Sv39MetaData,
    Sv48MetaData,
    X64PagingMetaData,
)
from multipaging.paging import (
    AlreadyMappedError,
    MappedToHugePageError,
    NoMemoryError,
    NotAlignedError,
    NotMappedError,
    PageSize,
    PagingError,
    PagingHandler,
    PagingMetaData,
    TlbFlush,
    TlbFlushAll,
)

logger = logging.getLogger(__name__)

ENTRY_COUNT = 512
_ENTRY_SIZE = 8

WalkFunc = Callable[[int, int, int, GenericPTE], None]


def _p4_index(vaddr: int) -> int:
    return (vaddr >> (12 + 27)) & (ENTRY_COUNT - 1)


def _p3_index(vaddr: int) -> int:
    return (vaddr >> (12 + 18)) & (ENTRY_COUNT - 1)


def _p2_index(vaddr: int) -> int:
    return (vaddr >> (12 + 9)) & (ENTRY_COUNT - 1)


def _p1_index(vaddr: int) -> int:
    return (vaddr >> 12) & (ENTRY_COUNT - 1)


class PageTable64:
    """A 3- or 4-level page table whose tables live in frames of ``handler``.

    Intermediate tables are allocated on demand and freed by :meth:`close`.
    """

    def __init__(
        self,
        metadata: PagingMetaData,
        pte_type: type[GenericPTE],
        handler: PagingHandler,
    ) -> None:
        if metadata.LEVELS not in (3, 4):
            raise ValueError(f"unsupported number of levels: {metadata.LEVELS}")
        self.metadata = metadata
        self.pte_type = pte_type
        self.handler = handler
        self._root = self._alloc_table()
        self._closed = False

    @property
    def root_paddr(self) -> int:
        """Physical address of the root table."""
        return self._root

    # ----- public operations -------------------------------------------------

    def map(
        self, vaddr: int, target: int, page_size: PageSize, flags: MappingFlags
    ) -> TlbFlush:
        """Map the page at ``vaddr`` to the frame at ``target``.

        Both addresses are aligned down to ``page_size``.
        """
        page_size = PageSize(page_size)
        table, idx = self._find_or_create(vaddr, page_size)
        if not self._load(table, idx).is_unused():
            raise AlreadyMappedError(f"{vaddr:#x} is already mapped")
        aligned = target & ~(page_size.value - 1)
        self._store(table, idx, self.pte_type.new_page(aligned, flags, page_size.is_huge()))
        return TlbFlush(self.metadata, vaddr)

    def remap(
        self, vaddr: int, paddr: int, flags: MappingFlags
    ) -> tuple[PageSize, TlbFlush]:
        """Replace the target and flags of the mapping at ``vaddr``."""
        table, idx, pte, size = self._find(vaddr)
        pte.set_paddr(paddr)
        pte.set_flags(flags, size.is_huge())
        self._store(table, idx, pte)
        return size, TlbFlush(self.metadata, vaddr)

    def protect(self, vaddr: int, flags: MappingFlags) -> tuple[PageSize, TlbFlush]:
        """Replace the flags of the mapping at ``vaddr``."""
        table, idx, pte, size = self._find(vaddr)
        if not pte.is_present():
            raise NotMappedError(f"{vaddr:#x} is not mapped")
        pte.set_flags(flags, size.is_huge())
        self._store(table, idx, pte)
        return size, TlbFlush(self.metadata, vaddr)

    def unmap(self, vaddr: int) -> tuple[int, PageSize, TlbFlush]:
        """Remove the mapping at ``vaddr``; return its target and page size."""
        table, idx, pte, size = self._find(vaddr)
        if not pte.is_present():
            pte.clear()
            self._store(table, idx, pte)
            raise NotMappedError(f"{vaddr:#x} is not mapped")
        paddr = pte.paddr()
        pte.clear()
        self._store(table, idx, pte)
        return paddr, size, TlbFlush(self.metadata, vaddr)

    def query(self, vaddr: int) -> tuple[int, MappingFlags, PageSize]:
        """Translate ``vaddr``; return the physical address, flags and page size."""
        _, _, pte, size = self._find(vaddr)
        if not pte.is_present():
            raise NotMappedError(f"{vaddr:#x} is not mapped")
        return pte.paddr() + size.align_offset(vaddr), pte.flags(), size

    def map_region(
        self,
        vaddr: int,
        get_paddr: Callable[[int], int],
        size: int,
        flags: MappingFlags,
        allow_huge: bool = False,
        flush_tlb_by_page: bool = False,
    ) -> TlbFlushAll:
        """Map ``size`` bytes starting at ``vaddr``, using huge pages if allowed."""
        if not PageSize.SIZE_4K.is_aligned(vaddr) or not PageSize.SIZE_4K.is_aligned(size):
            raise NotAlignedError(f"region {vaddr:#x}+{size:#x} is not 4K aligned")
        logger.debug(
            "map_region(%#x): [%#x, %#x) %r", self._root, vaddr, vaddr + size, flags
        )
        while size > 0:
            paddr = get_paddr(vaddr)
            page_size = self._pick_page_size(vaddr, paddr, size) if allow_huge else PageSize.SIZE_4K
            try:
                tlb = self.map(vaddr, paddr, page_size, flags)
            except PagingError as exc:
                logger.error(
                    "failed to map page: %#x(%s) -> %#x, %r", vaddr, page_size.name, paddr, exc
                )
                raise
            if flush_tlb_by_page:
                self.metadata.flush_tlb(vaddr)
                tlb.flush()
            else:
                tlb.ignore()
            vaddr += page_size.value
            size -= page_size.value
        return TlbFlushAll(self.metadata)

    def unmap_region(
        self, vaddr: int, size: int, flush_tlb_by_page: bool = False
    ) -> TlbFlushAll:
        """Unmap ``size`` bytes starting at ``vaddr``, following huge pages."""
        logger.debug("unmap_region(%#x) [%#x, %#x)", self._root, vaddr, vaddr + size)
        while size > 0:
            try:
                _, page_size, tlb = self.unmap(vaddr)
            except PagingError as exc:
                logger.error("failed to unmap page: %#x, %r", vaddr, exc)
                raise
            self._finish(tlb, flush_tlb_by_page)
            self._check_step(vaddr, size, page_size)
            vaddr += page_size.value
            size -= page_size.value
        return TlbFlushAll(self.metadata)

    def protect_region(
        self, vaddr: int, size: int, flags: MappingFlags, flush_tlb_by_page: bool = False
    ) -> TlbFlushAll:
        """Update the flags of ``size`` bytes starting at ``vaddr``."""
        logger.debug(
            "protect_region(%#x) [%#x, %#x) %r", self._root, vaddr, vaddr + size, flags
        )
        while size > 0:
            try:
                page_size, tlb = self.protect(vaddr, flags)
            except PagingError as exc:
                logger.error("failed to protect page: %#x, %r", vaddr, exc)
                raise
            self._finish(tlb, flush_tlb_by_page)
            self._check_step(vaddr, size, page_size)
            vaddr += page_size.value
            size -= page_size.value
        return TlbFlushAll(self.metadata)

    def walk(
        self,
        limit: int,
        pre_func: Optional[WalkFunc] = None,
        post_func: Optional[WalkFunc] = None,
    ) -> None:
        """Visit present entries depth first, at most ``limit`` per table.

        The callbacks receive the level (from 0), the index in its table, the
        virtual address the entry maps, and the entry.
        """
        self._walk(self._root, 0, 0, limit, pre_func, post_func)

    def copy_from(self, other: PageTable64, start: int, size: int) -> None:
        """Copy the root entries of ``other`` that cover the given range."""
        if size == 0:
            return
        start_idx, end_idx = self._top_level_range(start, size)
        for idx in range(start_idx, end_idx):
            addr = other._root + idx * _ENTRY_SIZE
            self._store(self._root, idx, self.pte_type(other.handler.read_word(addr)))

    def clear_copy_range(self, start: int, size: int) -> None:
        """Clear the root entries that cover the given range."""
        if size == 0:
            return
        start_idx, end_idx = self._top_level_range(start, size)
        for idx in range(start_idx, end_idx):
            self._store(self._root, idx, self.pte_type.empty())

    def close(self) -> None:
        """Free the intermediate tables and the root table."""
        if self._closed:
            return
        self._closed = True
        last = self.metadata.LEVELS - 1

        def free(level: int, _index: int, _vaddr: int, entry: GenericPTE) -> None:
            if level < last and entry.is_present() and not entry.is_huge():
                self.handler.dealloc_frame(entry.paddr())

        try:
            self.walk(1 << 64, None, free)
        except PagingError:
            pass
        self.handler.dealloc_frame(self._root)

    def __enter__(self) -> PageTable64:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ----- internals -------------------------------------------------------------

    def _alloc_table(self) -> int:
        paddr = self.handler.alloc_frame()
        if paddr is None:
            raise NoMemoryError("no free frame for a page table")
        for idx in range(ENTRY_COUNT):
            self.handler.write_word(paddr + idx * _ENTRY_SIZE, 0)
        return paddr

    def _load(self, table: int, idx: int) -> GenericPTE:
        return self.pte_type(self.handler.read_word(table + idx * _ENTRY_SIZE))

    def _store(self, table: int, idx: int, pte: GenericPTE) -> None:
        self.handler.write_word(table + idx * _ENTRY_SIZE, pte.bits)

    @staticmethod
    def _next_table(pte: GenericPTE) -> int:
        if pte.paddr() == 0:
            raise NotMappedError("next-level table is not present")
        if pte.is_huge():
            raise MappedToHugePageError("entry maps a huge page")
        return pte.paddr()

    def _next_table_or_create(self, table: int, idx: int) -> int:
        pte = self._load(table, idx)
        if pte.is_unused():
            paddr = self._alloc_table()
            self._store(table, idx, self.pte_type.new_table(paddr))
            return paddr
        return self._next_table(pte)

    def _find(self, vaddr: int) -> tuple[int, int, GenericPTE, PageSize]:
        table = self._root
        if self.metadata.LEVELS == 4:
            table = self._next_table(self._load(table, _p4_index(vaddr)))
        for index_fn, size in ((_p3_index, PageSize.SIZE_1G), (_p2_index, PageSize.SIZE_2M)):
            idx = index_fn(vaddr)
            pte = self._load(table, idx)
            if pte.is_huge():
                return table, idx, pte, size
            table = self._next_table(pte)
        idx = _p1_index(vaddr)
        return table, idx, self._load(table, idx), PageSize.SIZE_4K

    def _find_or_create(self, vaddr: int, page_size: PageSize) -> tuple[int, int]:
        table = self._root
        if self.metadata.LEVELS == 4:
            table = self._next_table_or_create(table, _p4_index(vaddr))
        idx = _p3_index(vaddr)
        if page_size is PageSize.SIZE_1G:
            return table, idx
        table = self._next_table_or_create(table, idx)
        idx = _p2_index(vaddr)
        if page_size is PageSize.SIZE_2M:
            return table, idx
        table = self._next_table_or_create(table, idx)
        return table, _p1_index(vaddr)

    @staticmethod
    def _pick_page_size(vaddr: int, paddr: int, size: int) -> PageSize:
        for page_size in (PageSize.SIZE_1G, PageSize.SIZE_2M):
            if (
                page_size.is_aligned(vaddr)
                and page_size.is_aligned(paddr)
                and size >= page_size.value
            ):
                return page_size
        return PageSize.SIZE_4K

    @staticmethod
    def _finish(tlb: TlbFlush, flush: bool) -> None:
        if flush:
            tlb.flush()
        else:
            tlb.ignore()

    @staticmethod
    def _check_step(vaddr: int, size: int, page_size: PageSize) -> None:
        if not page_size.is_aligned(vaddr):
            raise ValueError(f"{vaddr:#x} is not aligned to its {page_size.name} page")
        if page_size.value > size:
            raise ValueError(f"{page_size.name} page at {vaddr:#x} exceeds the region")

    def _top_level_range(self, start: int, size: int) -> tuple[int, int]:
        index_fn = _p3_index if self.metadata.LEVELS == 3 else _p4_index
        start_idx = index_fn(start)
        end_idx = index_fn(start + size - 1) + 1
        if end_idx <= start_idx:
            raise ValueError(f"range {start:#x}+{size:#x} wraps the top-level table")
        return start_idx, end_idx

    def _walk(
        self,
        table: int,
        level: int,
        start_vaddr: int,
        limit: int,
        pre_func: Optional[WalkFunc],
        post_func: Optional[WalkFunc],
    ) -> None:
        levels = self.metadata.LEVELS
        shift = 12 + (levels - 1 - level) * 9
        visited = 0
        for idx in range(ENTRY_COUNT):
            entry = self._load(table, idx)
            if not entry.is_present():
                continue
            vaddr = start_vaddr + (idx << shift)
            if pre_func is not None:
                pre_func(level, idx, vaddr, entry)
            if level < levels - 1 and not entry.is_huge():
                self._walk(self._next_table(entry), level + 1, vaddr, limit, pre_func, post_func)
            if post_func is not None:
                post_func(level, idx, vaddr, entry)
            visited += 1
            if visited >= limit:
                break


def x64_page_table(handler: PagingHandler) -> PageTable64:
    """Create an x86_64 4-level page table."""
    return PageTable64(X64PagingMetaData(), X64PTE, handler)


def a64_page_table(handler: PagingHandler) -> PageTable64:
    """Create an AArch64 VMSAv8-64 translation table."""
    return PageTable64(A64PagingMetaData(), A64PTE, handler)


def la64_page_table(handler: PagingHandler) -> PageTable64:
    """Create a LoongArch64 4-level page table."""
    return PageTable64(LA64MetaData(), LA64PTE, handler)


def sv39_page_table(handler: PagingHandler) -> PageTable64:
    """Create a RISC-V Sv39 (3-level) page table."""
    return PageTable64(Sv39MetaData(), Rv64PTE, handler)


def sv48_page_table(handler: PagingHandler) -> PageTable64:
    """Create a RISC-V Sv48 (4-level) page table."""
    return PageTable64(Sv48MetaData(), Rv64PTE, handler)