"""Shared paging types: errors, page sizes, metadata, frame handlers and TLB tokens."""

from __future__ import annotations

import enum
import heapq
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional

_U64 = (1 << 64) - 1
_WORD = 8
_FRAME_SIZE = 0x1000


class PagingError(Exception):
    """Base class of page table operation failures."""


class NoMemoryError(PagingError):
    """No physical frame could be allocated."""


class NotAlignedError(PagingError):
    """The address is not aligned to the page size."""


class NotMappedError(PagingError):
    """The mapping is not present."""


class AlreadyMappedError(PagingError):
    """The mapping is already present."""


class MappedToHugePageError(PagingError):
    """The entry maps a huge page where a next-level table was expected."""


class PageSize(enum.IntEnum):
    """Page sizes supported by the hardware page tables."""

    SIZE_4K = 0x1000
    SIZE_2M = 0x20_0000
    SIZE_1G = 0x4000_0000

    def is_huge(self) -> bool:
        """Whether this size is larger than 4K."""
        return self is not PageSize.SIZE_4K

    def is_aligned(self, addr_or_size: int) -> bool:
        """Whether an address or size is a multiple of this page size."""
        return addr_or_size & (self.value - 1) == 0

    def align_offset(self, addr: int) -> int:
        """Offset of the address within a page of this size."""
        return addr & (self.value - 1)


class PagingMetaData:
    """Architecture-dependent description of a hardware page table.

    ``on_flush`` receives the virtual address whose TLB entry is flushed, or
    ``None`` for a flush of the whole TLB.
    """

    LEVELS: ClassVar[int]
    PA_MAX_BITS: ClassVar[int]
    VA_MAX_BITS: ClassVar[int]

    def __init__(self, on_flush: Optional[Callable[[Optional[int]], None]] = None) -> None:
        self.on_flush = on_flush

    @property
    def pa_max_addr(self) -> int:
        """The largest valid physical address."""
        return (1 << self.PA_MAX_BITS) - 1

    def paddr_is_valid(self, paddr: int) -> bool:
        """Whether the physical address fits in PA_MAX_BITS."""
        return paddr <= self.pa_max_addr

    def vaddr_is_valid(self, vaddr: int) -> bool:
        """Whether the top bits of the virtual address are sign-extended."""
        top_mask = (_U64 << (self.VA_MAX_BITS - 1)) & _U64
        top = vaddr & top_mask
        return top == 0 or top == top_mask

    def flush_tlb(self, vaddr: Optional[int]) -> None:
        """Flush the TLB entry of ``vaddr``, or the whole TLB if it is None."""
        if self.on_flush is not None:
            self.on_flush(vaddr)


class PagingHandler(ABC):
    """OS-dependent access to physical frames used by page tables."""

    @abstractmethod
    def alloc_frame(self) -> Optional[int]:
        """Allocate a 4K physical frame; return its address or None."""

    @abstractmethod
    def dealloc_frame(self, paddr: int) -> None:
        """Free a frame obtained from alloc_frame."""

    @abstractmethod
    def read_word(self, paddr: int) -> int:
        """Read the 64-bit word at a physical address."""

    @abstractmethod
    def write_word(self, paddr: int, value: int) -> None:
        """Write a 64-bit word to a physical address."""


class FrameMemory(PagingHandler):
    """A simulated block of physical memory handing out 4K frames, lowest first."""

    def __init__(self, base: int, frame_count: int) -> None:
        if base % _FRAME_SIZE:
            raise ValueError(f"base {base:#x} is not 4K aligned")
        if frame_count < 0:
            raise ValueError("frame_count must not be negative")
        self.base = base
        self.frame_count = frame_count
        self._memory = bytearray(frame_count * _FRAME_SIZE)
        self._free = [base + i * _FRAME_SIZE for i in range(frame_count)]
        heapq.heapify(self._free)
        self._allocated: set[int] = set()

    @property
    def allocated_frames(self) -> frozenset[int]:
        """Addresses of the frames currently allocated."""
        return frozenset(self._allocated)

    def alloc_frame(self) -> Optional[int]:
        if not self._free:
            return None
        paddr = heapq.heappop(self._free)
        self._allocated.add(paddr)
        return paddr

    def dealloc_frame(self, paddr: int) -> None:
        if paddr not in self._allocated:
            raise ValueError(f"frame {paddr:#x} is not allocated")
        self._allocated.remove(paddr)
        heapq.heappush(self._free, paddr)

    def _offset(self, paddr: int) -> int:
        if paddr % _WORD:
            raise ValueError(f"address {paddr:#x} is not word aligned")
        offset = paddr - self.base
        if not 0 <= offset <= len(self._memory) - _WORD:
            raise ValueError(f"address {paddr:#x} is outside physical memory")
        return offset

    def read_word(self, paddr: int) -> int:
        offset = self._offset(paddr)
        return int.from_bytes(self._memory[offset : offset + _WORD], "little")

    def write_word(self, paddr: int, value: int) -> None:
        if not 0 <= value <= _U64:
            raise ValueError(f"value {value:#x} does not fit in 64 bits")
        offset = self._offset(paddr)
        self._memory[offset : offset + _WORD] = value.to_bytes(_WORD, "little")


@dataclass(frozen=True)
class TlbFlush:
    """Marks that the mapping of ``vaddr`` has changed."""

    metadata: PagingMetaData
    vaddr: int

    def flush(self) -> None:
        """Flush the TLB entry of the changed address."""
        self.metadata.flush_tlb(self.vaddr)

    def ignore(self) -> None:
        """Leave the flush to the caller."""


@dataclass(frozen=True)
class TlbFlushAll:
    """Marks that mappings of the page table have changed."""

    metadata: PagingMetaData

    def flush_all(self) -> None:
        """Flush the entire TLB."""
        self.metadata.flush_tlb(None)

    def ignore(self) -> None:
        """Leave the flush to the caller."""