"""
Walk an ELF binary's declared imports to find every shared library it needs
at runtime.
"""

import logging
import os
import shutil

from elftools.common.exceptions import ELFError

from ldgrab.common import get_imported_libraries


LOG = logging.getLogger(__name__)


class ResolutionError(Exception):
    """The imports of one file in the dependency graph could not be read."""


class NotFoundError(Exception):
    """The binary named on the command line could not be located."""


def open_object(filename, cache):
    """
    Open `filename` for reading, falling back to the ld.so.cache when no
    such path exists.
    """

    try:
        return open(filename, "rb")
    except FileNotFoundError:
        path, ok = cache.lookup(filename)
        if not ok:
            raise ResolutionError("Unable to locate library %r" % filename)
    return open(path, "rb")


def read_imports(filename, cache, reader=get_imported_libraries):
    """Return the declared imports of one object file."""

    try:
        with open_object(filename, cache) as f:
            return reader(f)
    except (OSError, ELFError) as e:
        raise ResolutionError("Failed to read imports of %r: %s"
                              % (filename, e)) from e


def recursive_imports(filename, cache, reader=get_imported_libraries):
    """
    Return the set of all libraries `filename` imports, directly or
    transitively. Each file's imports are read once; the start file only
    appears in the result if something imports it under the same name.
    Raises ResolutionError on the first file that cannot be read.
    """

    seen = {filename}
    imports = set()

    stack = [(filename, 0)]
    while stack:
        current, depth = stack.pop()
        LOG.debug("%simport %s", " " * depth, current)

        new = []
        for dep in read_imports(current, cache, reader):
            if dep in seen:
                continue
            seen.add(dep)
            imports.add(dep)
            new.append(dep)

        # Reversed so the first declared import is expanded first.
        stack.extend((dep, depth + 1) for dep in reversed(new))

    return imports


def resolve_binary(filename, cache):
    """
    Find `filename` as a path, then on $PATH, then in the ld.so.cache.
    """

    if os.path.exists(filename):
        return filename

    fn = shutil.which(filename)
    if fn is not None:
        return fn

    fn, ok = cache.lookup(filename)
    if ok:
        LOG.info("Resolved %r to %r", filename, fn)
        return fn

    raise NotFoundError("Unable to locate %r" % filename)
