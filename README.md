# multipaging

Multi-level page tables for several hardware architectures, modelled in
plain Python. The package builds and walks real page table layouts (512
entries of 64 bits per table, 4K/2M/1G pages) over a simulated physical
memory, so it can back an emulator, a teaching tool, or tests for code that
inspects page tables.

Supported formats:

| Architecture | Entry type (`multipaging.entries.*`) | Metadata (`multipaging.metadata`) | Levels | Factory (`multipaging.page_table`) |
|--------------|--------------------------------------|-----------------------------------|--------|------------------------------------|
| x86_64       | `x86_64.X64PTE`                      | `X64PagingMetaData`               | 4      | `x64_page_table`                   |
| AArch64      | `aarch64.A64PTE`, `aarch64.A64EL2PTE`| `A64PagingMetaData`               | 4      | `a64_page_table`                   |
| LoongArch64  | `loongarch64.LA64PTE`                | `LA64MetaData`                    | 4      | `la64_page_table`                  |
| RISC-V Sv39  | `riscv.Rv64PTE`                      | `Sv39MetaData`                    | 3      | `sv39_page_table`                  |
| RISC-V Sv48  | `riscv.Rv64PTE`                      | `Sv48MetaData`                    | 4      | `sv48_page_table`                  |

## Installation

```
pip install multipaging
```

The package has no runtime dependencies.

## Modules

- `multipaging.flags` — `MappingFlags` (`READ`, `WRITE`, `EXECUTE`, `USER`,
  `DEVICE`, `UNCACHED`) and the abstract `GenericPTE` entry, which holds its
  raw 64-bit value in `bits`.
- `multipaging.entries.x86_64`, `.riscv`, `.loongarch64`, `.aarch64` — the
  architecture flag types (`PTF`, `PTEFlags`, `DescriptorAttr`) with
  `from_mapping` / `to_mapping` conversions, and the entry classes. The
  AArch64 module also has `MemAttr` and `MAIR_VALUE` (`0x44ff04`);
  `A64EL2PTE` uses the EL2 permission model.
- `multipaging.paging` — `PageSize`, the `PagingError` family,
  `PagingMetaData`, the `PagingHandler` interface, the `FrameMemory` handler,
  and the `TlbFlush` / `TlbFlushAll` tokens.
- `multipaging.metadata` — metadata for each architecture. `LA64MetaData`
  also carries `PWCL_VALUE` and `PWCH_VALUE`.
- `multipaging.page_table` — `PageTable64` and one factory per architecture.

## Usage

Physical memory and frame allocation come from a `PagingHandler`.
`FrameMemory(base, frame_count)` is a ready-made one that hands out 4K frames
from a fixed region, lowest address first:

```python
from multipaging.flags import MappingFlags
from multipaging.paging import FrameMemory, PageSize, NotMappedError
from multipaging.page_table import x64_page_table

memory = FrameMemory(0x8000_0000, 64)

with x64_page_table(memory) as table:
    table.map(0x4000_0000, 0x9000_0000, PageSize.SIZE_4K,
              MappingFlags.READ | MappingFlags.WRITE).flush()

    paddr, flags, size = table.query(0x4000_0123)
    # paddr == 0x9000_0123, size is PageSize.SIZE_4K

    table.unmap(0x4000_0000).flush() if False else None
    try:
        table.query(0x4000_0000)
    except NotMappedError:
        pass
```

`unmap` returns a tuple `(paddr, page_size, tlb_flush)`; `remap` and
`protect` return `(page_size, tlb_flush)`.

Region operations choose huge pages when both addresses and the remaining
size allow it:

```python
table.map_region(0x4000_0000, lambda va: va - 0x4000_0000 + 0x8000_0000,
                 0x4000_0000, MappingFlags.READ, True, False).ignore()
```

`map_region` raises `NotAlignedError` unless the start and size are 4K
aligned. `unmap_region` and `protect_region` step through the region by the
size of each mapping they meet.

`walk(limit, pre_func, post_func)` visits present entries depth first, at
most `limit` per table; the callbacks receive the level, the index, the
virtual address and the entry. `copy_from` and `clear_copy_range` share and
unshare top-level entries between two tables. `close()` (or leaving the
`with` block) returns all intermediate tables and the root to the handler.

### TLB flushes

Every page-level change returns a `TlbFlush`, and every region-level change
returns a `TlbFlushAll`. `flush()` / `flush_all()` call the metadata's
`on_flush` callback with the virtual address, or with `None` for the whole
TLB; `ignore()` does nothing. The factory functions create metadata without
a callback, so to observe flushes build the table directly:

```python
from multipaging.entries.x86_64 import X64PTE
from multipaging.metadata import X64PagingMetaData
from multipaging.page_table import PageTable64

flushed = []
table = PageTable64(X64PagingMetaData(flushed.append), X64PTE, memory)
```

### Errors

Failures are raised as subclasses of `PagingError`: `NoMemoryError`,
`NotAlignedError`, `NotMappedError`, `AlreadyMappedError` and
`MappedToHugePageError`.

## What it does not do

The package only models page tables in memory it manages itself. It does not
touch a real MMU or TLB — a flush is nothing more than a call to `on_flush` —
and it has no command-line tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```