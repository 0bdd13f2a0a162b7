"""LoongArch64 multi-level page table entries."""

from __future__ import annotations

import enum
import functools
import operator
from typing import ClassVar

from multipaging.flags import GenericPTE, MappingFlags


class PTEFlags(enum.IntFlag):
    """LoongArch64 page table entry flags."""

    V = 1 << 0
    D = 1 << 1
    PLVL = 1 << 2
    PLVH = 1 << 3
    MATL = 1 << 4
    MATH = 1 << 5
    GH = 1 << 6
    P = 1 << 7
    W = 1 << 8
    G = 1 << 12
    NR = 1 << 61
    NX = 1 << 62
    RPLV = 1 << 63

    @classmethod
    def from_mapping(cls, flags: MappingFlags) -> PTEFlags:
        """Encode generic mapping flags as LoongArch64 entry flags."""
        flags = MappingFlags(flags)
        if not flags:
            return cls(0)
        ret = cls.V | cls.P
        if MappingFlags.READ not in flags:
            ret |= cls.NR
        if MappingFlags.WRITE in flags:
            ret |= cls.W | cls.D
        if MappingFlags.EXECUTE not in flags:
            ret |= cls.NX
        if MappingFlags.USER in flags:
            ret |= cls.PLVH | cls.PLVL
        if MappingFlags.DEVICE not in flags:
            if MappingFlags.UNCACHED in flags:
                ret |= cls.MATH  # weakly-ordered uncached
            else:
                ret |= cls.MATL  # coherent cached
        return ret

    def to_mapping(self) -> MappingFlags:
        """Decode these entry flags into generic mapping flags."""
        if PTEFlags.V not in self:
            return MappingFlags(0)
        ret = MappingFlags(0)
        if PTEFlags.NR not in self:
            ret |= MappingFlags.READ
        if PTEFlags.W in self:
            ret |= MappingFlags.WRITE
        if PTEFlags.NX not in self:
            ret |= MappingFlags.EXECUTE
        if (PTEFlags.PLVL | PTEFlags.PLVH) in self:
            ret |= MappingFlags.USER
        if PTEFlags.MATL not in self:
            if PTEFlags.MATH in self:
                ret |= MappingFlags.UNCACHED
            else:
                ret |= MappingFlags.DEVICE
        return ret


_KNOWN_BITS = functools.reduce(operator.or_, (m.value for m in PTEFlags), 0)


def _pte_flags(raw: int) -> PTEFlags:
    return PTEFlags(raw & _KNOWN_BITS)


class LA64PTE(GenericPTE):
    """Page table entry for LoongArch64 systems."""

    PHYS_ADDR_MASK: ClassVar[int] = 0x0000_FFFF_FFFF_F000  # bits 12..48

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> LA64PTE:
        pte_flags = PTEFlags.from_mapping(flags)
        if is_huge:
            pte_flags |= PTEFlags.GH
        return cls(int(pte_flags) | (int(paddr) & cls.PHYS_ADDR_MASK))

    @classmethod
    def new_table(cls, paddr: int) -> LA64PTE:
        return cls(int(paddr) & cls.PHYS_ADDR_MASK)

    def paddr(self) -> int:
        return self.bits & self.PHYS_ADDR_MASK

    def flags(self) -> MappingFlags:
        return _pte_flags(self.bits).to_mapping()

    def set_paddr(self, paddr: int) -> None:
        self.bits = (self.bits & ~self.PHYS_ADDR_MASK) | (int(paddr) & self.PHYS_ADDR_MASK)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        pte_flags = PTEFlags.from_mapping(flags)
        if is_huge:
            pte_flags |= PTEFlags.GH
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(pte_flags)

    def is_present(self) -> bool:
        return PTEFlags.P in _pte_flags(self.bits)

    def is_huge(self) -> bool:
        return PTEFlags.GH in _pte_flags(self.bits)