"""Generic multi-level page tables and entries for x86_64, AArch64, RISC-V and LoongArch64."""

__version__ = "0.5.3"