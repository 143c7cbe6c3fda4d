"""
Write a set of resolved files out, either as a tar stream or into a
directory.
"""

import logging
import os
import shutil
import tarfile
import tempfile


LOG = logging.getLogger(__name__)


def write_tar(out, paths):
    """
    Write `paths` to the binary stream `out` as a tar archive and return
    the total number of bytes read from disk. Members are named by
    basename and symlinks are followed. Every path is stat'ed before
    anything is written, so a missing file produces no archive at all.
    """

    for path in paths:
        os.stat(path)

    total = 0
    with tarfile.open(fileobj=out, mode="w|") as tf:
        for path in paths:
            LOG.debug("Adding %s", path)
            with open(path, "rb") as f:
                info = tf.gettarinfo(arcname=os.path.basename(path),
                                     fileobj=f)
                tf.addfile(info, f)
            total += info.size
    return total


def copy_files(paths, outdir):
    """
    Copy `paths` into a freshly created `outdir` and return the number of
    bytes copied. Files are copied into a staging directory next to
    `outdir`, which only replaces `outdir` once every copy succeeded; on
    error the existing `outdir` is left as it was.
    """

    for path in paths:
        os.stat(path)

    parent = os.path.dirname(os.path.abspath(outdir))
    staging = tempfile.mkdtemp(prefix=".ldgrab-", dir=parent)
    try:
        total = 0
        for path in paths:
            newpath = os.path.join(staging, os.path.basename(path))
            shutil.copy(path, newpath)
            total += os.path.getsize(newpath)
    except OSError:
        shutil.rmtree(staging)
        raise

    if os.path.isdir(outdir):
        shutil.rmtree(outdir)
    os.rename(staging, outdir)
    os.chmod(outdir, 0o755)
    return total
