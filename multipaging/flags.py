"""Architecture-independent mapping flags and the page table entry interface."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TypeVar

_U64 = (1 << 64) - 1


class MappingFlags(enum.IntFlag):
    """Permissions and attributes of a mapped memory region."""

    READ = 1 << 0
    WRITE = 1 << 1
    EXECUTE = 1 << 2
    USER = 1 << 3
    DEVICE = 1 << 4
    UNCACHED = 1 << 5


_P = TypeVar("_P", bound="GenericPTE")


@dataclass(repr=False)
class GenericPTE(ABC):
    """A 64-bit page table entry; subclasses give the architecture's encoding."""

    bits: int = 0

    def __post_init__(self) -> None:
        self.bits = int(self.bits) & _U64

    @classmethod
    def empty(cls: type[_P]) -> _P:
        """Return an entry with all bits set to zero."""
        return cls(0)

    @classmethod
    @abstractmethod
    def new_page(cls: type[_P], paddr: int, flags: MappingFlags, is_huge: bool) -> _P:
        """Create an entry pointing to a terminal page or block."""

    @classmethod
    @abstractmethod
    def new_table(cls: type[_P], paddr: int) -> _P:
        """Create an entry pointing to a next-level table."""

    @abstractmethod
    def paddr(self) -> int:
        """Return the physical address held by the entry."""

    @abstractmethod
    def flags(self) -> MappingFlags:
        """Return the generic mapping flags of the entry."""

    @abstractmethod
    def set_paddr(self, paddr: int) -> None:
        """Replace the physical address, keeping the other bits."""

    @abstractmethod
    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        """Replace the flags, keeping the physical address."""

    @abstractmethod
    def is_present(self) -> bool:
        """Whether the entry's flags mark it present."""

    @abstractmethod
    def is_huge(self) -> bool:
        """Whether a non-last-level entry maps a huge frame."""

    def is_unused(self) -> bool:
        """Whether every bit of the entry is zero."""
        return self.bits == 0

    def clear(self) -> None:
        """Set every bit of the entry to zero."""
        self.bits = 0

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(raw={self.bits:#x}, "
            f"paddr={self.paddr():#x}, flags={self.flags()!r})"
        )