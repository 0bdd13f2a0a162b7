"""Paging metadata for the supported architectures."""

from __future__ import annotations

from multipaging.paging import PagingMetaData


class X64PagingMetaData(PagingMetaData):
    """Metadata of x86_64 page tables."""

    LEVELS = 4
    PA_MAX_BITS = 52
    VA_MAX_BITS = 48


class A64PagingMetaData(PagingMetaData):
    """Metadata of AArch64 page tables."""

    LEVELS = 4
    PA_MAX_BITS = 48
    VA_MAX_BITS = 48

    def vaddr_is_valid(self, vaddr: int) -> bool:
        """Whether the bits above VA_MAX_BITS are all zero or all one."""
        top_bits = vaddr >> self.VA_MAX_BITS
        return top_bits in (0, 0xFFFF)


class LA64MetaData(PagingMetaData):
    """Metadata of LoongArch64 page tables (dir3, dir2, dir1 and pt)."""

    LEVELS = 4
    PA_MAX_BITS = 48
    VA_MAX_BITS = 48

    # PTBase 12, PTWidth 9, Dir1Base 21, Dir1Width 9, Dir2Base 30, Dir2Width 9.
    PWCL_VALUE = 12 | (9 << 5) | (21 << 10) | (9 << 15) | (30 << 20) | (9 << 25)
    # Dir3Base 39, Dir3Width 9, Dir4 unused.
    PWCH_VALUE = 39 | (9 << 6)


class Sv39MetaData(PagingMetaData):
    """Metadata of RISC-V Sv39 page tables."""

    LEVELS = 3
    PA_MAX_BITS = 56
    VA_MAX_BITS = 39


class Sv48MetaData(PagingMetaData):
    """Metadata of RISC-V Sv48 page tables."""

    LEVELS = 4
    PA_MAX_BITS = 56
    VA_MAX_BITS = 48