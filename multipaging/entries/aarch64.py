"""AArch64 VMSAv8-64 translation table format descriptors."""

from __future__ import annotations

import enum
import functools
import operator
from typing import ClassVar

from multipaging.flags import GenericPTE, MappingFlags

# Attr0 = Device-nGnRE, Attr1 = Normal write-back, Attr2 = Normal non-cacheable.
MAIR_VALUE = 0x44_FF_04


class MemAttr(enum.IntEnum):
    """Memory attribute index into the MAIR register."""

    DEVICE = 0
    NORMAL = 1
    NORMAL_NON_CACHEABLE = 2


class DescriptorAttr(enum.IntFlag):
    """Attribute fields of VMSAv8-64 translation table descriptors."""

    VALID = 1 << 0
    NON_BLOCK = 1 << 1
    ATTR_INDX = 0b111 << 2
    NS = 1 << 5
    AP_EL0 = 1 << 6
    AP_RO = 1 << 7
    INNER = 1 << 8
    SHAREABLE = 1 << 9
    AF = 1 << 10
    NG = 1 << 11
    CONTIGUOUS = 1 << 52
    PXN = 1 << 53
    UXN = 1 << 54
    PXN_TABLE = 1 << 59
    XN_TABLE = 1 << 60
    AP_NO_EL0_TABLE = 1 << 61
    AP_NO_WRITE_TABLE = 1 << 62
    NS_TABLE = 1 << 63

    @classmethod
    def from_mem_attr(cls, idx: MemAttr) -> DescriptorAttr:
        """Build attributes holding only the memory attribute index."""
        idx = MemAttr(idx)
        bits = int(idx) << 2
        if idx in (MemAttr.NORMAL, MemAttr.NORMAL_NON_CACHEABLE):
            bits |= int(cls.INNER) | int(cls.SHAREABLE)
        return cls(bits)

    def mem_attr(self) -> MemAttr | None:
        """Return the memory attribute index, or None if it is reserved."""
        idx = (int(self) & _ATTR_INDEX_MASK) >> 2
        try:
            return MemAttr(idx)
        except ValueError:
            return None

    @classmethod
    def from_mapping(cls, flags: MappingFlags, el2: bool = False) -> DescriptorAttr:
        """Encode generic mapping flags; ``el2`` selects the EL2 permission model."""
        flags = MappingFlags(flags)
        if not flags:
            return cls(0)
        if MappingFlags.DEVICE in flags:
            attr = cls.from_mem_attr(MemAttr.DEVICE)
        elif MappingFlags.UNCACHED in flags:
            attr = cls.from_mem_attr(MemAttr.NORMAL_NON_CACHEABLE)
        else:
            attr = cls.from_mem_attr(MemAttr.NORMAL)
        attr |= cls.VALID
        if MappingFlags.WRITE not in flags:
            attr |= cls.AP_RO
        if el2:
            if MappingFlags.EXECUTE not in flags:
                attr |= cls.UXN
        elif MappingFlags.USER in flags:
            attr |= cls.AP_EL0 | cls.PXN
            if MappingFlags.EXECUTE not in flags:
                attr |= cls.UXN
        else:
            attr |= cls.UXN
            if MappingFlags.EXECUTE not in flags:
                attr |= cls.PXN
        return attr

    def to_mapping(self, el2: bool = False) -> MappingFlags:
        """Decode into generic mapping flags; ``el2`` selects the EL2 permission model."""
        if DescriptorAttr.VALID not in self:
            return MappingFlags(0)
        flags = MappingFlags.READ
        if DescriptorAttr.AP_RO not in self:
            flags |= MappingFlags.WRITE
        if el2:
            if DescriptorAttr.UXN not in self:
                flags |= MappingFlags.EXECUTE
        elif DescriptorAttr.AP_EL0 in self:
            flags |= MappingFlags.USER
            if DescriptorAttr.UXN not in self:
                flags |= MappingFlags.EXECUTE
        elif DescriptorAttr.PXN not in self:
            flags |= MappingFlags.EXECUTE
        mem = self.mem_attr()
        if mem is MemAttr.DEVICE:
            flags |= MappingFlags.DEVICE
        elif mem is MemAttr.NORMAL_NON_CACHEABLE:
            flags |= MappingFlags.UNCACHED
        return flags


_ATTR_INDEX_MASK = 0b111_00
_KNOWN_BITS = functools.reduce(
    operator.or_, (int(m) for m in DescriptorAttr.__members__.values()), 0
)


def _attr(raw: int) -> DescriptorAttr:
    return DescriptorAttr(raw & _KNOWN_BITS)


class A64PTE(GenericPTE):
    """A VMSAv8-64 translation table descriptor (EL1 permission model).

    AttrIndx is 0 for device memory, 1 for normal memory and 2 for normal
    non-cacheable memory; MAIR_ELx must be set to ``MAIR_VALUE`` to match.
    """

    PHYS_ADDR_MASK: ClassVar[int] = 0x0000_FFFF_FFFF_F000  # bits 12..48
    EL2: ClassVar[bool] = False

    @classmethod
    def _leaf_attr(cls, flags: MappingFlags, is_huge: bool) -> DescriptorAttr:
        attr = DescriptorAttr.from_mapping(flags, cls.EL2) | DescriptorAttr.AF
        if not is_huge:
            attr |= DescriptorAttr.NON_BLOCK
        return attr

    @classmethod
    def new_page(cls, paddr: int, flags: MappingFlags, is_huge: bool) -> A64PTE:
        attr = cls._leaf_attr(flags, is_huge)
        return cls(int(attr) | (int(paddr) & cls.PHYS_ADDR_MASK))

    @classmethod
    def new_table(cls, paddr: int) -> A64PTE:
        attr = DescriptorAttr.NON_BLOCK | DescriptorAttr.VALID
        return cls(int(attr) | (int(paddr) & cls.PHYS_ADDR_MASK))

    def paddr(self) -> int:
        return self.bits & self.PHYS_ADDR_MASK

    def flags(self) -> MappingFlags:
        return _attr(self.bits).to_mapping(self.EL2)

    def set_paddr(self, paddr: int) -> None:
        self.bits = (self.bits & ~self.PHYS_ADDR_MASK) | (int(paddr) & self.PHYS_ADDR_MASK)

    def set_flags(self, flags: MappingFlags, is_huge: bool) -> None:
        attr = self._leaf_attr(flags, is_huge)
        self.bits = (self.bits & self.PHYS_ADDR_MASK) | int(attr)

    def is_present(self) -> bool:
        return DescriptorAttr.VALID in _attr(self.bits)

    def is_huge(self) -> bool:
        return DescriptorAttr.NON_BLOCK not in _attr(self.bits)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(raw={self.bits:#x}, paddr={self.paddr():#x}, "
            f"attr={_attr(self.bits)!r}, flags={self.flags()!r})"
        )


class A64EL2PTE(A64PTE):
    """A VMSAv8-64 descriptor using the EL2 permission model."""

    EL2: ClassVar[bool] = True