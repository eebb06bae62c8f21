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
Staging for tasks that run inside a container.

The container sees the host work directory at the container work directory,
plus a scratch directory at ``/tmp``. Everything else it needs is either put
into the host work directory, where that bind mount already shows it, or
given a bind mount of its own. Targets in entries are container paths.
"""
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from threading import Event
from typing import Any, Optional

import docker.types

from flowstage.fileManagers import FetchJob
from flowstage.fileManagers.abstractFileManager import AbstractFileManager
from flowstage.lib.io import mkdtemp, robust_rmtree
from flowstage.staging.direct import PlannedEntry, StagingExecutor
from flowstage.staging.entries import EntryKind, StagingEntry
from flowstage.staging.registry import DestinationRegistry
from flowstage.statsAndLogging import StagingStats

logger = logging.getLogger(__name__)

CONTAINER_TMP_DIR = "/tmp"


@dataclass(frozen=True)
class MountDeclaration:
    """A host path to show at a container path."""

    source: str
    target: str
    read_only: bool = False

    def to_argument(self) -> str:
        """The ``docker run`` flag for this mount."""
        parts = ["--mount=type=bind", f"source={self.source}", f"target={self.target}"]
        if self.read_only:
            parts.append("readonly")
        return ",".join(parts)

    def to_docker_mount(self) -> docker.types.Mount:
        """The same mount, for the Docker API client."""
        return docker.types.Mount(target=self.target, source=self.source, type="bind", read_only=self.read_only)

    def to_volume(self) -> dict[str, dict[str, Any]]:
        """The same mount, as an entry of the ``volumes`` argument of ``containers.run``."""
        return {self.source: {"bind": self.target, "mode": "ro" if self.read_only else "rw"}}

    def __str__(self) -> str:
        return self.to_argument()


class ContainerMountPlanner:
    """
    Works out the bind mounts for one contained task invocation, staging
    whatever has to be materialized on the host along the way.

    Like :class:`StagingExecutor`, a planner covers a single staging pass.
    The destination registry it keeps is keyed by container path, so at most
    one mount is ever declared for a container target.
    """

    def __init__(self,
                 file_manager: Optional[AbstractFileManager] = None,
                 tmpdir_prefix: Optional[str] = None,
                 fetch_threads: int = 4,
                 cancel: Optional[Event] = None) -> None:
        """
        :param tmpdir_prefix: directory to make the scratch directory in.
            Defaults to the system temporary directory.
        """
        self.executor = StagingExecutor(file_manager=file_manager, fetch_threads=fetch_threads, cancel=cancel)
        self.registry: DestinationRegistry = self.executor.registry
        self.tmpdir_prefix = tmpdir_prefix
        self.mounts: list[MountDeclaration] = []
        self.staged: list[StagingEntry] = []
        self.tmpdir: Optional[str] = None
        self.host_work_dir = ""
        self.container_work_dir = ""
        self.inplace_update = False
        self._mounted_targets: set[str] = set()

    @property
    def stats(self) -> StagingStats:
        return self.executor.stats

    def plan(self,
             entries: Iterable[StagingEntry],
             host_work_dir: str,
             container_work_dir: str,
             inplace_update: bool = False) -> list[str]:
        """
        Stage the entries for a container run.

        :return: the mount arguments for ``docker run``, in order. The first
            two are always the work directory and the scratch directory.
        """
        self.host_work_dir = host_work_dir.rstrip("/") or "/"
        self.container_work_dir = container_work_dir.rstrip("/") or "/"
        self.inplace_update = inplace_update

        # Validate and claim everything before making the scratch directory
        planned = self.executor.plan(entries, self.container_work_dir)
        self.staged = [p.entry for p in planned]

        self.tmpdir = mkdtemp(prefix="flowstage-tmpdir", dir=self.tmpdir_prefix)
        try:
            self._mount(self.host_work_dir, self.container_work_dir, read_only=False)
            self._mount(self.tmpdir, CONTAINER_TMP_DIR, read_only=False)

            self.executor.prefetch(FetchJob(p.location.value, self.host_path(p.entry.target)) for p in planned
                                   if p.needs_materialization and self._is_fetched(p))
            for p in planned:
                self.executor.check_cancelled()
                if not p.entry.staged:
                    continue
                if not p.needs_materialization:
                    logger.debug("Already staged %s at %s, not mounting it again", p.source, p.entry.target)
                    self.stats.record("skip")
                    continue
                self._stage(p)
        except BaseException:
            # Nothing else removes the scratch directory
            logger.debug("Removing scratch directory %s after a failed plan", self.tmpdir)
            robust_rmtree(self.tmpdir)
            self.tmpdir = None
            raise
        self.stats.log(f"{len(planned)} entries for a container with {len(self.mounts)} mounts")
        return [m.to_argument() for m in self.mounts]

    def in_work_dir(self, target: str) -> bool:
        return target == self.container_work_dir or target.startswith(self.container_work_dir.rstrip("/") + "/")

    def host_path(self, target: str) -> str:
        """
        Where a container path lives on the host.

        Paths under the container work directory are moved to the host work
        directory. Any other path is used on the host as it is.
        """
        if self.in_work_dir(target):
            return os.path.normpath(os.path.join(self.host_work_dir, os.path.relpath(target, self.container_work_dir)))
        return target

    def _is_fetched(self, p: PlannedEntry) -> bool:
        return (p.location is not None and p.location.is_remote()
                and self.executor.file_manager.need_download(p.location.value))

    def _mount(self, source: str, target: str, read_only: bool) -> None:
        if target in self._mounted_targets:
            logger.debug("%s is already mounted", target)
            return
        self._mounted_targets.add(target)
        self.mounts.append(MountDeclaration(source, target, read_only))
        self.stats.record("mount")
        logger.debug("Mounting %s at %s%s", source, target, " read-only" if read_only else "")

    def _stage(self, p: PlannedEntry) -> None:
        entry, location = p.entry, p.location
        target = entry.target
        host_target = self.host_path(target)
        inside = self.in_work_dir(target)
        ex = self.executor

        if entry.kind.is_created():
            ex.write(entry.resolved, host_target, writable=entry.kind == EntryKind.CreateWritableFile)
            if not inside:
                self._mount(host_target, target, read_only=entry.kind == EntryKind.CreateFile)
            return

        assert location is not None
        fetched = self._is_fetched(p)
        if fetched:
            ex.download(location.value, host_target)

        if entry.kind == EntryKind.WritableFile:
            if fetched:
                if not inside:
                    self._mount(host_target, target, read_only=False)
            elif self.inplace_update:
                # The task changes the original, and the host sees it through the link
                ex.require_source(location.value, target)
                self._mount(location.value, target, read_only=False)
                if inside:
                    ex.symlink(location.value, host_target)
            else:
                ex.copy_file(location.value, host_target)
                if not inside:
                    self._mount(host_target, target, read_only=False)

        elif entry.kind == EntryKind.WritableDirectory:
            if location.is_literal():
                ex.make_directory(host_target)
                if not inside:
                    self._mount(host_target, target, read_only=False)
            elif fetched:
                if not inside:
                    self._mount(host_target, target, read_only=False)
            elif self.inplace_update:
                ex.require_source(location.value, target)
                self._mount(location.value, target, read_only=False)
            else:
                ex.copy_dir(location.value, host_target)
                if not inside:
                    self._mount(host_target, target, read_only=False)

        else:
            # Plain files and directories
            if location.is_literal():
                ex.make_directory(host_target)
                if not inside:
                    self._mount(host_target, target, read_only=not self.inplace_update)
                return
            if not fetched:
                ex.require_source(location.value, target)
            source = host_target if fetched else location.value
            self._mount(source, target, read_only=not self.inplace_update)
            if not fetched and inside:
                ex.symlink(location.value, host_target)
