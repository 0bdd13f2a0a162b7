"""x86 page table entries for 64-bit paging."""

from __future__ import annotations

import enum
import functools
import operator
from typing import ClassVar

from multipaging.flags import GenericPTE, MappingFlags


class PTF(enum.IntFlag):
    """x86_64 page table entry flags."""

    PRESENT = 1 << 0
    WRITABLE = 1 << 1
    USER_ACCESSIBLE = 1 << 2
    WRITE_THROUGH = 1 << 3
    NO_CACHE = 1 << 4
    ACCESSED = 1 << 5
    DIRTY = 1 << 6
    HUGE_PAGE = 1 << 7
    GLOBAL = 1 << 8
    BIT_9 = 1 << 9
    BIT_10 = 1 << 10
    BIT_11 = 1 << 11
    BIT_52 = 1 << 52
    BIT_53 = 1 << 53
    BIT_54 = 1 << 54
    BIT_55 = 1 << 55
    BIT_56 = 1 << 56
    BIT_57 = 1 << 57
    BIT_58 = 1 << 58
    BIT_59 = 1 << 59
    BIT_60 = 1 << 60
    BIT_61 = 1 << 61
    BIT_62 = 1 << 62
    NO_EXECUTE = 1 << 63

    @classmethod
    def from_mapping(cls, flags: MappingFlags) -> PTF:
        """Encode generic mapping flags as x86_64 entry flags."""
        flags = MappingFlags(flags)
        if not flags:
            return cls(0)
        ret = cls.PRESENT
        if MappingFlags.WRITE in flags:
            ret |= cls.WRITABLE
        if MappingFlags.EXECUTE not in flags:
            ret |= cls.NO_EXECUTE
        if MappingFlags.USER in flags:
            ret |= cls.USER_ACCESSIBLE
        if MappingFlags.DEVICE in flags or MappingFlags.UNCACHED in flags:
            ret |= cls.NO_CACHE | cls.WRITE_THROUGH
        return ret

    def to_mapping(self) -> MappingFlags:
        """Decode these entry flags into generic mapping flags."""
        if PTF.PRESENT not in self:
            return MappingFlags(0)
        ret = MappingFlags.READ
        if PTF.WRITABLE in self:
            ret |= MappingFlags.WRITE
        if PTF.NO_EXECUTE not in self:
            ret |= MappingFlags.EXECUTE
        if PTF.USER_ACCESSIBLE in self:
            ret |= MappingFlags.USER
        if PTF.NO_CACHE in self:
            ret |= MappingFlags.UNCACHED
        return ret


_KNOWN_BITS = functools.reduce(operator.or_, (m.value for m in PTF), 0)


def _ptf(raw: int) -> PTF:
    return PTF(raw & _KNOWN_BITS)


class X64PTE(GenericPTE):
    """An x86_64 page table entry."""

    PHYS_ADDR_MASK: ClassVar[int] = 0x000F_FFFF_FFFF_F000  # bits 12..52

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> X64PTE:
        ptf = PTF.from_mapping(flags)
        if is_huge:
            ptf |= PTF.HUGE_PAGE
        return cls(int(ptf) | (int(paddr) & cls.PHYS_ADDR_MASK))

    @classmethod
    def new_table(cls, paddr: int) -> X64PTE:
        ptf = PTF.PRESENT | PTF.WRITABLE | PTF.USER_ACCESSIBLE
        return cls(int(ptf) | (int(paddr) & cls.PHYS_ADDR_MASK))

    def paddr(self) -> int:
        return self.bits & self.PHYS_ADDR_MASK

    def flags(self) -> MappingFlags:
        return _ptf(self.bits).to_mapping()

    def set_paddr(self, paddr: int) -> None:
        self.bits = (self.bits & ~self.PHYS_ADDR_MASK) | (int(paddr) & self.PHYS_ADDR_MASK)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        ptf = PTF.from_mapping(flags)
        if is_huge:
            ptf |= PTF.HUGE_PAGE
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(ptf)

    def is_present(self) -> bool:
        return PTF.PRESENT in _ptf(self.bits)

    def is_huge(self) -> bool:
        return PTF.HUGE_PAGE in _ptf(self.bits)