# Copyright (C) 2015-2021 Regents of the University of California
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import logging
import os
import shutil
import stat
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional, Union

logger = logging.getLogger(__name__)

StrPath = Union[str, "os.PathLike[str]"]

# Schemes that are fetched rather than read in place
STANDARD_SCHEMES = ["http:", "https:", "ftp:"]


def is_file_url(location: str) -> bool:
    """True for file: URLs, False for bare paths and other URLs."""
    return location.startswith("file:")


def mkdtemp(suffix: Optional[str] = None, prefix: Optional[str] = None, dir: Optional[StrPath] = None) -> str:
    """
    tempfile.mkdtemp, but mode 711 rather than 700.

    A container engine bind-mounting the directory, or something in it, has
    to be able to traverse it even when it does not run as us, as on NFS.
    """
    path = tempfile.mkdtemp(suffix=suffix, prefix=prefix, dir=dir)
    os.chmod(path, stat.S_IRWXU | stat.S_IXGRP | stat.S_IXOTH)
    return path


def robust_rmtree(path: Union[str, bytes]) -> None:
    """
    Delete a file or directory tree, ignoring anything that is already gone
    or goes away while we work.

    Read-only directories, like those made for staged literals, are made
    writable before they are emptied. Symbolic links are removed, never
    followed.
    """
    # Work in bytes so undecodable names can still be removed
    if not isinstance(path, bytes):
        path = os.fsencode(path)
    if not os.path.lexists(path):
        return

    if os.path.islink(path) or not os.path.isdir(path):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        return

    os.chmod(path, os.stat(path).st_mode | stat.S_IWUSR | stat.S_IXUSR)
    try:
        children = os.listdir(path)
    except FileNotFoundError:
        return
    for child in children:
        robust_rmtree(os.path.join(path, child))
    try:
        os.rmdir(path)
    except FileNotFoundError:
        pass


def ensure_parent_dir(path: StrPath) -> None:
    """Create the directory that will hold the given path, if it is missing."""
    parent = os.path.dirname(os.path.normpath(path))
    if parent:
        os.makedirs(parent, exist_ok=True)


@contextmanager
def AtomicFileCreate(final_path: StrPath, keep: bool = False) -> Iterator[str]:
    """
    Write a file under a temporary name beside final_path, and give it its
    real name only if the block succeeds.

    A failed download therefore never leaves a partial input at the target.
    The temporary file is removed on failure unless keep is set.
    """
    final_path = os.fspath(final_path)
    ext = os.path.splitext(final_path)[1]
    tmp_path = f"{final_path}.{uuid.uuid4()}.tmp{ext}"
    try:
        yield tmp_path
        os.rename(tmp_path, final_path)
    except Exception:
        if not keep and os.path.lexists(tmp_path):
            os.unlink(tmp_path)
        raise


def copy_file(src_path: StrPath, dest_path: StrPath) -> None:
    """
    Copy a single file byte for byte and give the copy the mode of the original,
    plus owner write, since a copy is made for the task to change.

    The destination must not be a symlink back into shared storage, so any
    existing link there is replaced rather than written through.
    """
    if os.path.islink(dest_path):
        os.unlink(dest_path)
    shutil.copyfile(src_path, dest_path)
    os.chmod(dest_path, stat.S_IMODE(os.stat(src_path).st_mode) | stat.S_IWUSR)


def copy_tree(src: StrPath, dst: StrPath) -> None:
    """
    Recursively copy a directory.

    Regular files are copied with their modes. A symlink that points at a
    directory is recreated as the same symlink instead of being followed, so
    that link loops in the source cannot make the copy run forever. Symlinks
    to files are followed and copied as files.

    Copied directories keep their modes but are always owner-writable, and
    get their mode only once their contents are in.
    """
    src = os.path.normpath(src)
    dst = os.path.normpath(dst)
    if not os.path.isdir(src):
        raise NotADirectoryError(f"Source is not a directory: {src}")
    os.makedirs(dst, mode=0o700, exist_ok=True)

    for entry in sorted(os.scandir(src), key=lambda e: e.name):
        src_path = os.path.join(src, entry.name)
        dst_path = os.path.join(dst, entry.name)
        if entry.is_symlink():
            link_target = os.readlink(src_path)
            if os.path.isdir(os.path.join(os.path.dirname(src_path), link_target)):
                os.symlink(link_target, dst_path)
                continue
        if entry.is_dir():
            copy_tree(src_path, dst_path)
        else:
            copy_file(src_path, dst_path)
    os.chmod(dst, stat.S_IMODE(os.stat(src).st_mode) | stat.S_IRWXU)


def write_literal(path: StrPath, contents: Union[str, bytes], writable: bool = False) -> None:
    """
    Write in-memory content to a new file.

    Unless the file is meant to be writable, it is made read-only afterwards,
    so a task cannot modify something it was only supposed to read.
    """
    data = contents.encode("utf-8") if isinstance(contents, str) else contents
    with open(path, "xb") as f:
        f.write(data)
    if not writable:
        mode = os.stat(path).st_mode
        os.chmod(path, mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))


def make_fifo(path: StrPath) -> None:
    """Create a named pipe, as when an output is to be streamed to a reader."""
    os.mkfifo(path, 0o644)


def is_fifo(path: StrPath) -> bool:
    try:
        return stat.S_ISFIFO(os.stat(path).st_mode)
    except FileNotFoundError:
        return False
