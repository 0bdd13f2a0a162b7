"""RISC-V Sv39 and Sv48 page table entries."""

from __future__ import annotations

import enum
import functools
import operator
from typing import ClassVar

from multipaging.flags import GenericPTE, MappingFlags


class PTEFlags(enum.IntFlag):
    """RISC-V page table entry flags."""

    V = 1 << 0
    R = 1 << 1
    W = 1 << 2
    X = 1 << 3
    U = 1 << 4
    G = 1 << 5
    A = 1 << 6
    D = 1 << 7

    @classmethod
    def from_mapping(cls, flags: MappingFlags) -> PTEFlags:
        """Encode generic mapping flags as RISC-V entry flags."""
        flags = MappingFlags(flags)
        if not flags:
            return cls(0)
        ret = cls.V
        if MappingFlags.READ in flags:
            ret |= cls.R
        if MappingFlags.WRITE in flags:
            ret |= cls.W
        if MappingFlags.EXECUTE in flags:
            ret |= cls.X
        if MappingFlags.USER in flags:
            ret |= cls.U
        return ret

    def to_mapping(self) -> MappingFlags:
        """Decode these entry flags into generic mapping flags."""
        ret = MappingFlags(0)
        if PTEFlags.V not in self:
            return ret
        if PTEFlags.R in self:
            ret |= MappingFlags.READ
        if PTEFlags.W in self:
            ret |= MappingFlags.WRITE
        if PTEFlags.X in self:
            ret |= MappingFlags.EXECUTE
        if PTEFlags.U in self:
            ret |= MappingFlags.USER
        return ret


_KNOWN_BITS = functools.reduce(operator.or_, (m.value for m in PTEFlags), 0)


def _pte_flags(raw: int) -> PTEFlags:
    return PTEFlags(raw & _KNOWN_BITS)


def _leaf_flags(flags: MappingFlags) -> PTEFlags:
    ret = PTEFlags.from_mapping(flags) | PTEFlags.A | PTEFlags.D
    if not ret & (PTEFlags.R | PTEFlags.X):
        raise ValueError(f"leaf entry must be readable or executable: {flags!r}")
    return ret


class Rv64PTE(GenericPTE):
    """Sv39 and Sv48 page table entry for RV64 systems."""

    PHYS_ADDR_MASK: ClassVar[int] = (1 << 54) - (1 << 10)  # bits 10..54

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> Rv64PTE:
        pte_flags = _leaf_flags(flags)
        return cls(int(pte_flags) | ((int(paddr) >> 2) & cls.PHYS_ADDR_MASK))

    @classmethod
    def new_table(cls, paddr: int) -> Rv64PTE:
        return cls(int(PTEFlags.V) | ((int(paddr) >> 2) & cls.PHYS_ADDR_MASK))

    def paddr(self) -> int:
        return (self.bits & self.PHYS_ADDR_MASK) << 2

    def flags(self) -> MappingFlags:
        return _pte_flags(self.bits).to_mapping()

    def set_paddr(self, paddr: int) -> None:
        self.bits = (self.bits & ~self.PHYS_ADDR_MASK) | (
            (int(paddr) >> 2) & self.PHYS_ADDR_MASK
        )

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        pte_flags = _leaf_flags(flags)
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(pte_flags)

    def is_present(self) -> bool:
        return PTEFlags.V in _pte_flags(self.bits)

    def is_huge(self) -> bool:
        return bool(_pte_flags(self.bits) & (PTEFlags.R | PTEFlags.X))