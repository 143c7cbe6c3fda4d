"""
Read the glibc shared library cache (ld.so.cache) and look sonames up in it
the same way the dynamic linker does.

Only the old cache format is understood: a header starting with "ld.so",
a little-endian entry count, fixed-size (flags, key, value) records and a
trailing string table that the record offsets index into.
"""

from dataclasses import dataclass
import logging
import os
import struct


LOG = logging.getLogger(__name__)

CACHE_PATH = "/etc/ld.so.cache"
CACHE_MAGIC = b"ld.so-1.7.0\x00"
MAGIC_PREFIX = b"ld.so"

FLAGS_64 = 0x300

COUNT = struct.Struct("<I")
FILE_ENTRY = struct.Struct("<iII")

DIGITS = "0123456789"


class DecodeError(Exception):
    """The cache file could not be decoded."""


class InvalidMagic(DecodeError):
    pass


class Truncated(DecodeError):
    pass


class OffsetOutOfRange(DecodeError):
    pass


class LookupMiss(KeyError):
    """A soname is neither on LD_LIBRARY_PATH nor in the cache."""


@dataclass(frozen=True)
class CacheEntry:
    flags: int
    key: str
    value: str

    @property
    def is64(self):
        return (self.flags & FLAGS_64) == FLAGS_64

    def __str__(self):
        return "CacheEntry{%x, %r, %r, is64=%s}" % (self.flags, self.key,
                                                     self.value, self.is64)


def _unpack(fmt, data, offset, what):
    if offset + fmt.size > len(data):
        raise Truncated("Cache truncated while reading %s at offset %d"
                        % (what, offset))
    return fmt.unpack_from(data, offset)


def _read_string(table, offset):
    if offset >= len(table):
        raise OffsetOutOfRange("String offset %d outside of string table "
                               "(%d bytes)" % (offset, len(table)))
    end = table.find(b"\0", offset)
    if end == -1:
        raise OffsetOutOfRange("String at offset %d is not NUL-terminated"
                               % offset)
    return os.fsdecode(table[offset:end])


def decode(data):
    """
    Decode the raw bytes of an ld.so.cache file into a tuple of
    CacheEntry, preserving the on-disk order.
    """

    header = data[:len(CACHE_MAGIC)]
    if not (header.startswith(MAGIC_PREFIX)
            or MAGIC_PREFIX.startswith(header)):
        raise InvalidMagic("Magic does not start with ld.so: %r" % header)
    if len(header) < len(CACHE_MAGIC):
        raise Truncated("Cache truncated in header")

    offset = len(CACHE_MAGIC)
    nlibs, = _unpack(COUNT, data, offset, "entry count")
    offset += COUNT.size

    records = []
    for i in range(nlibs):
        records.append(_unpack(FILE_ENTRY, data, offset, "entry %d" % i))
        offset += FILE_ENTRY.size

    table = data[offset:]
    return tuple(CacheEntry(flags, _read_string(table, key),
                            _read_string(table, value))
                 for flags, key, value in records)


def libcmp(p1, p2):
    """
    Compare two sonames the way glibc's _dl_cache_libcmp orders them: runs
    of digits compare numerically, a digit outranks a non-digit, anything
    else compares by code point and a shared prefix puts the shorter name
    first. Returns -1, 0 or 1.
    """

    def leading_num(s, i):
        j = i
        while j < len(s) and s[j] in DIGITS:
            j += 1
        return int(s[i:j])

    for i in range(min(len(p1), len(p2))):
        c1, c2 = p1[i], p2[i]
        if c1 in DIGITS and c2 in DIGITS:
            n1, n2 = leading_num(p1, i), leading_num(p2, i)
            if n1 < n2:
                return -1
            if n1 > n2:
                return 1
        elif c1 in DIGITS:
            return 1
        elif c2 in DIGITS:
            return -1
        elif c1 < c2:
            return -1
        elif c1 > c2:
            return 1

    if len(p1) < len(p2):
        return -1
    if len(p1) > len(p2):
        return 1
    return 0


def log_fallback(name, index, entries):
    """Default observer for lookups that only succeeded by linear scan."""
    LOG.debug("Found %r the slow way at %d", name, index)
    for i, entry in enumerate(entries[max(index - 10, 0):index + 10],
                              start=max(index - 10, 0)):
        LOG.debug("  %d, %r", i, entry.key)


class DLCache:
    """
    The decoded contents of ld.so.cache.

    Entries are expected in the order ldconfig writes them, descending by
    libcmp. Nothing checks this, which is why lookup() falls back to a
    linear scan when bisection misses.
    """

    def __init__(self, entries, want64=None, environ=None,
                 on_fallback=log_fallback):
        self.entries = tuple(entries)
        if want64 is None:
            want64 = struct.calcsize("P") == 8
        self.want64 = want64
        self.environ = os.environ if environ is None else environ
        self.on_fallback = on_fallback

    def __len__(self):
        return len(self.entries)

    def with_arch(self, want64):
        """Return a cache over the same entries preferring another ABI."""
        return DLCache(self.entries, want64=want64, environ=self.environ,
                       on_fallback=self.on_fallback)

    def _search_library_path(self, library):
        ld_path = self.environ.get("LD_LIBRARY_PATH")
        if not ld_path:
            return None

        for path in ld_path.split(":"):
            if not path:
                continue
            maybe_path = os.path.join(path, library)
            try:
                os.stat(maybe_path)
            except OSError:
                continue
            return maybe_path
        return None

    def _bisect(self, library):
        lo, hi = 0, len(self.entries)
        while lo < hi:
            mid = (lo + hi) // 2
            entry = self.entries[mid]
            x = libcmp(entry.key, library)
            if x == 0:
                if entry.is64 == self.want64:
                    return entry.value
                # Wrong platform, only the lower half is searched.
                hi = mid
            elif x < 0:
                hi = mid
            else:
                lo = mid + 1
        return None

    def lookup(self, library):
        """
        Resolve a soname to a path. Returns a (path, found) pair; path is
        an empty string when nothing matched.
        """

        path = self._search_library_path(library)
        if path is not None:
            return path, True

        path = self._bisect(library)
        if path is not None:
            return path, True

        for i, entry in enumerate(self.entries):
            if entry.key == library:
                if self.on_fallback is not None:
                    self.on_fallback(library, i, self.entries)
                return entry.value, True

        return "", False

    def require(self, library):
        path, found = self.lookup(library)
        if not found:
            raise LookupMiss(library)
        return path


def read_dlcache(fileobj, **kwargs):
    """Decode an open ld.so.cache file into a DLCache."""
    return DLCache(decode(fileobj.read()), **kwargs)


def load(path=CACHE_PATH, **kwargs):
    with open(path, "rb") as f:
        dc = read_dlcache(f, **kwargs)
    LOG.debug("Loaded %d entries from %s", len(dc), path)
    return dc
