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
import stat
from collections.abc import Iterator
from typing import Optional
from urllib.parse import urlsplit

from flowstage.cwl.objects import LITERAL_PREFIX, Directory, File, FileOrDirectory
from flowstage.exceptions import InvalidLocation, SourceUnavailable
from flowstage.staging.entries import EntryKind, StagingEntry
from flowstage.staging.locations import resolve
from flowstage.staging.registry import DestinationRegistry

logger = logging.getLogger(__name__)

# The same limit Linux puts on resolving a path
MAX_SYMLINK_HOPS = 40


class PathMapper:
    """
    Turns the File and Directory objects a task refers to into a staging plan.

    Produces one :class:`StagingEntry` for every unique location, in the order
    the locations are first seen. Each top-level object goes in a directory
    of its own under the stage directory (``stg0000``, ``stg0001``, ...)
    unless ``separate_dirs`` is off, and secondary files go beside their
    primary file.

    The entries have these types:

        File: link or fetch the file from resolved to target.

        CreateFile: create the file at target, treating resolved as the contents.

        WritableFile: copy the file from resolved to target.

        CreateWritableFile: create the file at target from resolved, and leave
        it writable.

        Directory: link or fetch the directory, or make it if resolved is a
        literal marker.

        WritableDirectory: copy the directory, or make it if resolved is a
        literal marker.

    Children of a directory that can be staged as a whole are recorded with
    ``staged`` off, so they are known but not put in place separately,
    unless ``stage_listing`` is set.
    """

    def __init__(self,
                 referenced: list[FileOrDirectory],
                 stagedir: str,
                 basedir: Optional[str] = None,
                 separate_dirs: bool = True,
                 stage_listing: bool = False,
                 copy: bool = False) -> None:
        """
        :param stagedir: where targets go.
        :param basedir: what relative locations are relative to.
        :param copy: give the task its own writable copy of everything.
        """
        self.stagedir = stagedir
        self.basedir = basedir if basedir is not None else os.getcwd()
        self.separate_dirs = separate_dirs
        self.stage_listing = stage_listing
        self.copy = copy
        self.registry = DestinationRegistry()
        self._pathmap: dict[str, StagingEntry] = {}
        self.setup(referenced)

    def setup(self, referenced: list[FileOrDirectory]) -> None:
        stagedir = self.stagedir
        for i, obj in enumerate(referenced):
            if self.separate_dirs:
                stagedir = os.path.join(self.stagedir, "stg%04d" % i)
            self.visit(obj, stagedir, copy=self.copy or obj.writable, staged=True)

    def visit(self, obj: FileOrDirectory, stagedir: str, copy: bool = False, staged: bool = False) -> None:
        """
        Map one object and everything under it.

        :param stagedir: the directory the object's target goes in, unless it
            is a File with a dirname of its own.
        :param copy: use the writable types, so the task gets its own copy.
        :param staged: whether the generated entries are actually put in place.
        """
        location = obj.location
        if location in self._pathmap:
            # Map things consistently, and only once
            logger.debug("Already mapped %s to %s", location, self._pathmap[location].target)
            return

        if isinstance(obj, File) and obj.dirname:
            stagedir = obj.dirname
        if obj.basename is None:
            raise InvalidLocation(location, "cannot stage something with no basename")
        _, tgt = self.registry.claim(location, os.path.join(stagedir, obj.basename))

        if isinstance(obj, Directory):
            literal = obj.is_literal()
            # A made-up directory with things to put inside it has to be a real,
            # writable directory rather than a mount.
            writable = copy or (literal and bool(obj.listing))
            self._pathmap[location] = StagingEntry(
                resolved=self._resolve(location),
                target=tgt,
                kind=EntryKind.WritableDirectory if writable else EntryKind.PlainDirectory,
                staged=staged,
            )
            logger.debug("Mapped directory %s to %s", location, tgt)
            if not literal and not self.stage_listing:
                # The directory comes along as a whole
                staged = False
            for child in obj.listing or []:
                self.visit(child, tgt, copy=copy, staged=staged)

        elif isinstance(obj, File):
            if obj.is_literal() and obj.contents is not None:
                self._pathmap[location] = StagingEntry(
                    resolved=obj.contents,
                    target=tgt,
                    kind=EntryKind.CreateWritableFile if copy else EntryKind.CreateFile,
                    staged=staged,
                )
            else:
                self._pathmap[location] = StagingEntry(
                    resolved=self._dereference(self._resolve(location)),
                    target=tgt,
                    kind=EntryKind.WritableFile if copy else EntryKind.PlainFile,
                    staged=staged,
                    streamable=bool(obj.extra.get("streamable", False)),
                )
            logger.debug("Mapped file %s to %s", location, tgt)
            # Secondary files go next to this one
            for secondary in obj.secondary_files:
                self.visit(secondary, stagedir, copy=copy, staged=staged)

    def _resolve(self, location: str) -> str:
        """A host path for local locations; URLs and literal markers as they are."""
        if not urlsplit(location).scheme and not location.startswith(LITERAL_PREFIX) and not os.path.isabs(location):
            location = os.path.join(self.basedir, location)
        return resolve(location).value

    @staticmethod
    def _dereference(path: str) -> str:
        """
        Follow symbolic links, so the task is given the real file.

        :raises SourceUnavailable: if the links go round in a loop.
        """
        if not os.path.isabs(path):
            return path
        start = path
        try:
            for _ in range(MAX_SYMLINK_HOPS):
                if not stat.S_ISLNK(os.lstat(path).st_mode):
                    return path
                link = os.readlink(path)
                path = link if os.path.isabs(link) else os.path.join(os.path.dirname(path), link)
        except FileNotFoundError:
            # Whatever stages it will report the missing source
            return path
        raise SourceUnavailable(start, reason=f"more than {MAX_SYMLINK_HOPS} levels of symbolic links")

    def mapper(self, location: str) -> StagingEntry:
        return self._pathmap[location]

    def __contains__(self, location: object) -> bool:
        return location in self._pathmap

    def __iter__(self) -> Iterator[str]:
        return iter(self._pathmap)

    def items(self) -> list[tuple[str, StagingEntry]]:
        return list(self._pathmap.items())

    def entries(self) -> list[StagingEntry]:
        """The staging plan, in the order locations were first seen."""
        return list(self._pathmap.values())

    def reversemap(self, target: str) -> Optional[tuple[str, str]]:
        """Find the (location, resolved) pair mapped to a target, if any."""
        for location, entry in self._pathmap.items():
            if entry.target == target:
                return location, entry.resolved
        return None
