"""
Shared test fixtures: synthetic ld.so.cache files and caches.
"""

from functools import cmp_to_key
import struct

import pytest

from ldgrab.dlcache import CACHE_MAGIC, CacheEntry, DLCache, libcmp


def pack_cache(entries, magic=CACHE_MAGIC):
    """Serialize (flags, key, value) triples in the old ld.so.cache format."""
    table = b""
    offsets = {}
    records = []
    for flags, key, value in entries:
        for s in (key, value):
            if s not in offsets:
                offsets[s] = len(table)
                table += s.encode() + b"\0"
        records.append(struct.pack("<iII", flags, offsets[key],
                                   offsets[value]))
    return magic + struct.pack("<I", len(entries)) + b"".join(records) + table


def ldconfig_order(entries):
    """Sort entries the way ldconfig writes them: descending, 64-bit first."""
    def compare(a, b):
        return libcmp(a.key, b.key) or (a.flags - b.flags)
    return sorted(entries, key=cmp_to_key(compare), reverse=True)


@pytest.fixture
def make_cache():
    """Build a DLCache from triples, in ldconfig order, ignoring the env."""
    def _make(triples, **kwargs):
        kwargs.setdefault("environ", {})
        kwargs.setdefault("want64", True)
        entries = ldconfig_order(CacheEntry(*t) for t in triples)
        return DLCache(entries, **kwargs)
    return _make


@pytest.fixture
def cache_file(tmp_path):
    """Write triples to an ld.so.cache file and return its path."""
    def _write(triples, magic=CACHE_MAGIC):
        path = tmp_path / "ld.so.cache"
        path.write_bytes(pack_cache(triples, magic))
        return path
    return _write


ELF_HEADER = struct.Struct("<16sHHIQQQIHHHHHH")
PROGRAM_HEADER = struct.Struct("<IIQQQQQQ")
SECTION_HEADER = struct.Struct("<IIQQQQIIQQ")
DYN_ENTRY = struct.Struct("<qQ")

PT_LOAD, PT_DYNAMIC = 1, 2
DT_NULL, DT_NEEDED, DT_STRTAB, DT_STRSZ = 0, 1, 5, 10
SHT_STRTAB = 3


def pack_elf(needed=None):
    """
    Build a minimal little-endian ELF64 shared object. With `needed`, it
    gets a PT_DYNAMIC segment declaring those sonames as DT_NEEDED, in
    order; without, it has no dynamic segment at all. Everything is mapped
    by one PT_LOAD at vaddr 0, so file offsets double as addresses.
    """
    phnum = 1 if needed is None else 2
    offset = ELF_HEADER.size + phnum * PROGRAM_HEADER.size

    dynamic = b""
    dynstr = b""
    if needed is not None:
        dynstr = b"\0"
        name_offsets = []
        for name in needed:
            name_offsets.append(len(dynstr))
            dynstr += name.encode() + b"\0"
        dyn_size = (len(needed) + 3) * DYN_ENTRY.size
        dynstr_offset = offset + dyn_size
        tags = [(DT_NEEDED, off) for off in name_offsets]
        tags += [(DT_STRTAB, dynstr_offset), (DT_STRSZ, len(dynstr)),
                 (DT_NULL, 0)]
        dynamic = b"".join(DYN_ENTRY.pack(*tag) for tag in tags)
    dyn_offset = offset

    shstrtab = b"\0.shstrtab\0"
    shstrtab_offset = offset + len(dynamic) + len(dynstr)
    shoff = shstrtab_offset + len(shstrtab)
    padding = b"\0" * (-shoff % 8)
    shoff += len(padding)
    size = shoff + 2 * SECTION_HEADER.size

    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + b"\0" * 8
    header = ELF_HEADER.pack(ident, 3, 62, 1, 0, ELF_HEADER.size, shoff, 0,
                             ELF_HEADER.size, PROGRAM_HEADER.size, phnum,
                             SECTION_HEADER.size, 2, 1)
    phdrs = PROGRAM_HEADER.pack(PT_LOAD, 5, 0, 0, 0, size, size, 0x1000)
    if needed is not None:
        phdrs += PROGRAM_HEADER.pack(PT_DYNAMIC, 6, dyn_offset, dyn_offset,
                                     dyn_offset, len(dynamic), len(dynamic),
                                     8)
    shdrs = SECTION_HEADER.pack(0, 0, 0, 0, 0, 0, 0, 0, 0, 0)
    shdrs += SECTION_HEADER.pack(1, SHT_STRTAB, 0, 0, shstrtab_offset,
                                 len(shstrtab), 0, 0, 1, 0)
    return header + phdrs + dynamic + dynstr + shstrtab + padding + shdrs


@pytest.fixture
def elf_file(tmp_path):
    """Write a synthetic ELF object under tmp_path and return its path."""
    def _write(name, needed=None):
        path = tmp_path / name
        path.write_bytes(pack_elf(needed))
        return path
    return _write
