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
"""
Staging for tasks that run directly on the host.

Every entry is turned into the cheapest filesystem action that gives the task
what it needs at the target path: a symlink for inputs it will only read, a
copy for inputs it may change, a download for inputs that are not here yet,
and a plain write for content that only exists in memory.
"""
import logging
import os
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Event
from typing import Optional

from flowstage.exceptions import DestinationConflict, InvalidLocation, IOFailure, SourceUnavailable, StagingException
from flowstage.fileManagers import FetchJob
from flowstage.fileManagers.abstractFileManager import AbstractFileManager
from flowstage.fileManagers.localFileManager import LocalFileManager
from flowstage.lib.io import ensure_parent_dir, make_fifo, write_literal
from flowstage.lib.pipes import StreamRegistry
from flowstage.staging.entries import EntryKind, StagingEntry
from flowstage.staging.locations import ResolvedLocation, resolve
from flowstage.staging.registry import DestinationRegistry
from flowstage.statsAndLogging import StagingStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedEntry:
    """An entry after validation and destination allocation, before any I/O."""

    entry: StagingEntry
    # None for the Create* kinds, whose resolved field is content.
    location: Optional[ResolvedLocation]
    # What the entry's destination is registered to.
    source: str
    needs_materialization: bool


def validate(entry: StagingEntry) -> Optional[ResolvedLocation]:
    """
    Check that an entry can be staged at all, without touching anything.

    :raises InvalidLocation: if the source cannot be understood, or is a
        literal marker where there is no content to write.
    """
    if entry.kind.is_created():
        return None
    location = resolve(entry.resolved)
    if location.is_literal() and not entry.kind.is_directory():
        raise InvalidLocation(entry.resolved, f"a literal marker cannot be staged as {entry.kind.value}")
    return location


def source_key(entry: StagingEntry, location: Optional[ResolvedLocation]) -> str:
    """The identity used for a source in the destination registry."""
    return location.value if location is not None else entry.resolved


class StagingExecutor:
    """
    Applies staging entries to the host filesystem.

    Each executor covers one staging pass, for one task invocation, and owns
    the destination registry for that pass. Entries are applied in order and
    the first failure stops the pass; whatever was already staged is left for
    the caller to throw away along with the working directory.
    """

    def __init__(self,
                 file_manager: Optional[AbstractFileManager] = None,
                 inplace_update: bool = False,
                 streams: Optional[StreamRegistry] = None,
                 fetch_threads: int = 4,
                 cancel: Optional[Event] = None,
                 registry: Optional[DestinationRegistry] = None) -> None:
        """
        :param inplace_update: let the task change writable inputs where they
            are, so they are linked instead of copied.
        :param streams: streamable outputs of other tasks that inputs may be
            hooked up to.
        :param fetch_threads: the most remote fetches to run at once.
        :param cancel: when set, the pass stops before its next step.
        """
        self.file_manager = file_manager if file_manager is not None else LocalFileManager()
        self.inplace_update = inplace_update
        self.streams = streams
        self.fetch_threads = fetch_threads
        self.cancel = cancel if cancel is not None else Event()
        self.registry = registry if registry is not None else DestinationRegistry()
        self.stats = StagingStats()
        self._fetched: set[str] = set()

    def plan(self, entries: Iterable[StagingEntry], target_root: Optional[str] = None) -> list[PlannedEntry]:
        """
        Validate every entry and give each staged one its final destination.

        Nothing on disk is touched, so an invalid location stops the pass
        before anything has been staged.
        """
        planned = []
        for entry in entries:
            if target_root is not None and not os.path.isabs(entry.target):
                entry = entry.with_target(os.path.join(target_root, entry.target))
            location = validate(entry)
            source = source_key(entry, location)
            if not entry.staged:
                planned.append(PlannedEntry(entry, location, source, False))
                continue
            needs_materialization, final_target = self.registry.claim(source, entry.target)
            planned.append(PlannedEntry(entry.with_target(final_target), location, source, needs_materialization))
        return planned

    def apply(self, entries: Iterable[StagingEntry], target_root: Optional[str] = None) -> list[StagingEntry]:
        """
        Stage the entries.

        :param target_root: directory that relative targets are taken to be in.
        :return: the entries with the targets they were actually staged at.
        """
        planned = self.plan(entries, target_root)
        self.prefetch(FetchJob(p.location.value, p.entry.target) for p in planned
                      if p.needs_materialization and self._fetches_directly(p))
        for p in planned:
            self.check_cancelled()
            if not p.entry.staged:
                continue
            if not p.needs_materialization:
                self.stats.record('skip')
                continue
            self.registry.check(p.source, p.entry.target)
            self._stage(p)
        self.stats.log(f"{len(planned)} entries for direct execution")
        return [p.entry for p in planned]

    def _fetches_directly(self, p: PlannedEntry) -> bool:
        """True if the entry is staged by downloading straight into its target."""
        return (p.location is not None and p.location.is_remote()
                and self.file_manager.need_download(p.location.value))

    def _stage(self, p: PlannedEntry) -> None:
        entry, location = p.entry, p.location
        kind = entry.kind
        if kind.is_created():
            self.write(entry.resolved, entry.target, writable=kind == EntryKind.CreateWritableFile)
            return
        assert location is not None
        if location.is_literal():
            # Only directories get this far
            self.make_directory(entry.target)
        elif self._fetches_directly(p):
            self.download(location.value, entry.target)
        elif kind == EntryKind.WritableFile:
            if self.inplace_update:
                self.symlink(location.value, entry.target)
            else:
                self.copy_file(location.value, entry.target)
        elif kind == EntryKind.WritableDirectory:
            if self.inplace_update:
                self.symlink(location.value, entry.target)
            else:
                self.copy_dir(location.value, entry.target)
        elif entry.streamable and self.streams is not None and location.value in self.streams:
            self.connect_stream(location.value, entry.target)
        else:
            self.symlink(location.value, entry.target)

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise IOFailure('finish staging', reason='the task was cancelled')

    def prefetch(self, jobs: Iterable[FetchJob]) -> None:
        """
        Fetch remote sources concurrently, returning when all are in place.
        """
        jobs = [job for job in jobs if job.dest not in self._fetched]
        if not jobs:
            return
        for job in jobs:
            self._check_free(job.dest, job.location)
            with self._filesystem_errors('create parent directory', job.dest, job.location):
                ensure_parent_dir(job.dest)
        self.file_manager.download_all(jobs, threads=self.fetch_threads, cancel=self.cancel)
        for job in jobs:
            self._fetched.add(job.dest)
            self.stats.record('download')

    # Filesystem primitives. The container mount planner uses these too, with
    # host-side paths.

    def download(self, location: str, dest: str) -> None:
        if dest in self._fetched:
            return
        self._check_free(dest, location)
        with self._filesystem_errors('create parent directory', dest, location):
            ensure_parent_dir(dest)
        self.file_manager.download(location, dest)
        self._fetched.add(dest)
        self.stats.record('download')

    def symlink(self, src: str, dest: str) -> None:
        self.require_source(src, dest)
        self._check_free(dest, src)
        logger.debug('Linking %s to %s', dest, src)
        with self._filesystem_errors('symlink', dest, src):
            ensure_parent_dir(dest)
            os.symlink(src, dest)
        self.stats.record('symlink')

    def copy_file(self, src: str, dest: str) -> None:
        self.require_source(src, dest)
        self._check_free(dest, src)
        logger.debug('Copying %s to %s', src, dest)
        with self._filesystem_errors('copy file', dest, src):
            ensure_parent_dir(dest)
            self.file_manager.copy_file(src, dest)
        self.stats.record('copy')

    def copy_dir(self, src: str, dest: str) -> None:
        self.require_source(src, dest)
        self._check_free(dest, src)
        logger.debug('Copying directory %s to %s', src, dest)
        with self._filesystem_errors('copy directory', dest, src):
            ensure_parent_dir(dest)
            self.file_manager.copy_dir(src, dest)
        self.stats.record('copy')

    def write(self, contents: str, dest: str, writable: bool = False) -> None:
        self._check_free(dest, None)
        logger.debug('Writing %i characters to %s', len(contents), dest)
        with self._filesystem_errors('write file', dest, None):
            ensure_parent_dir(dest)
            write_literal(dest, contents, writable=writable)
        self.stats.record('write')

    def make_directory(self, dest: str) -> None:
        logger.debug('Creating directory %s', dest)
        with self._filesystem_errors('create directory', dest, None):
            os.makedirs(dest, exist_ok=True)
        self.stats.record('mkdir')

    def connect_stream(self, src: str, dest: str) -> None:
        """Make dest a named pipe that receives a copy of a streamed output."""
        assert self.streams is not None
        tee = self.streams.get(src)
        assert tee is not None
        self._check_free(dest, src)
        logger.debug('Connecting named pipe %s to stream %s', dest, src)
        with self._filesystem_errors('create named pipe', dest, src):
            ensure_parent_dir(dest)
            make_fifo(dest)
        tee.add_fifo_writer(dest)
        self.stats.record('fifo')

    def require_source(self, src: str, dest: str) -> None:
        if not os.path.lexists(src):
            raise SourceUnavailable(src, target=dest, reason='no such file or directory')

    def _check_free(self, dest: str, location: Optional[str]) -> None:
        if os.path.lexists(dest):
            raise DestinationConflict(dest, claimed_by=None, location=location)

    @contextmanager
    def _filesystem_errors(self, operation: str, target: str, location: Optional[str]) -> Iterator[None]:
        try:
            yield
        except StagingException:
            raise
        except OSError as e:
            raise IOFailure(operation, target=target, location=location, reason=str(e)) from e
