#!/usr/bin/env python3

"""
Extract a binary's library dependencies, resolved through ld.so.cache, and
write them out as a tar stream or copy them to a given location.
"""

from argparse import ArgumentParser
import logging
import os
import sys

from elftools.common.exceptions import ELFError

from ldgrab.archive import copy_files, write_tar
from ldgrab.common import get_elf_class
from ldgrab.deps import NotFoundError, ResolutionError, recursive_imports, \
    resolve_binary
from ldgrab.dlcache import CACHE_PATH, DecodeError, load


LOG = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = ArgumentParser(description='Bundle a binary together with '
                                        'the shared libraries it needs')
    parser.add_argument('--cache', default=CACHE_PATH, metavar='PATH',
                        help='ld.so.cache to read (default: %(default)s)')
    parser.add_argument('--out-dir', default=None,
                        help='Copy files here instead of writing a tar '
                             'stream to stdout')
    parser.add_argument('-v', '--verbose', action='store_true',
                        default=False, help='Log dependency traversal')
    parser.add_argument('binary', help='The ELF binary (path, $PATH name or '
                                       'soname)')

    return parser.parse_args(argv)


def resolve_paths(dc, filename, imports):
    """
    Return `filename` followed by the resolved path of every import, in
    sorted order. Imports that cannot be resolved are only reported.
    """

    paths = [filename]
    for lib in sorted(imports):
        path, ok = dc.lookup(lib)
        if ok:
            LOG.info('%s => %s', lib, path)
            paths.append(path)
        else:
            LOG.warning('%s (not found)', lib)
    return paths


def write_output(paths, outdir=None, stdout=None):
    """Write `paths` out and return the number of bytes read."""
    if outdir is not None:
        LOG.info('Using output dir %s', outdir)
        return copy_files(paths, outdir)

    stdout = sys.stdout if stdout is None else stdout
    if stdout.isatty():
        LOG.warning('Not writing tar file to terminal.')
        LOG.warning('Use `| cat` if you really want it.')
        with open(os.devnull, 'wb') as devnull:
            return write_tar(devnull, paths)

    total = write_tar(stdout.buffer, paths)
    stdout.flush()
    return total


def main(argv=None):
    """The main function."""
    args = parse_args(argv)

    logging.basicConfig(format='%(asctime)s %(message)s', stream=sys.stderr,
                        level=logging.DEBUG if args.verbose else
                        logging.INFO)

    try:
        dc = load(args.cache)
    except (OSError, DecodeError) as e:
        LOG.error('Failed to load %s: %s', args.cache, e)
        return 1

    try:
        binary = resolve_binary(args.binary, dc)
        dc = dc.with_arch(get_elf_class(binary) == 64)
        imports = recursive_imports(binary, dc)
    except NotFoundError as e:
        LOG.error('resolve_binary %r: %s', args.binary, e)
        return 1
    except (OSError, ELFError, ResolutionError) as e:
        LOG.error('%s', e)
        return 1

    paths = resolve_paths(dc, binary, imports)

    try:
        total = write_output(paths, args.out_dir)
    except OSError as e:
        LOG.error('Failed to write output: %s', e)
        return 1

    LOG.info('Total: %.2f MiB', total / 1024 / 1024)
    return 0


if __name__ == '__main__':
    sys.exit(main())
