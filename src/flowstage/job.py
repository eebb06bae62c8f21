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
Staging a whole task invocation, as handed over by the job dispatch layer.

A job description names what the task needs and how it will run. Staging it
gives back the entries as they were actually staged and, for a contained
task, the mount arguments for the container command.
"""
import enum
import logging
import os
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Optional

from ruamel.yaml import YAML

from flowstage import lookupEnvVar
from flowstage.common import DEFAULT_CONTAINER_WORK_DIR
from flowstage.cwl.outputs import OutputBinding, collect_outputs, prepare_streamable_outputs
from flowstage.cwl.utils import collect_dir_entries
from flowstage.fileManagers.abstractFileManager import AbstractFileManager
from flowstage.lib.io import robust_rmtree
from flowstage.lib.pipes import StreamRegistry
from flowstage.staging.container import CONTAINER_TMP_DIR, ContainerMountPlanner
from flowstage.staging.direct import StagingExecutor
from flowstage.staging.entries import StagingEntry
from flowstage.staging.pathmapper import PathMapper
from flowstage.statsAndLogging import StagingStats

logger = logging.getLogger(__name__)


class ExecutionMode(enum.Enum):
    direct = "direct"
    contained = "contained"


@dataclass
class StagingRequest:
    """Everything needed to stage one task invocation."""

    entries: list[StagingEntry]
    host_work_dir: str
    container_work_dir: Optional[str] = None
    inplace_update: bool = False
    execution_mode: ExecutionMode = ExecutionMode.direct
    job_id: Optional[str] = None
    docker_image: Optional[str] = None
    network_access: bool = False
    custom_net: Optional[str] = None
    stdout_path: Optional[str] = None
    output_bindings: list[OutputBinding] = field(default_factory=list)

    @classmethod
    def from_dict(cls, rec: dict[str, Any]) -> "StagingRequest":
        """
        Read a job description.

        Entries come from ``fileitems`` in their wire form, and from the File
        and Directory objects found anywhere in ``inputs``, which are laid
        out in the work directory. A job with a ``dockerImage`` is contained
        unless ``executionMode`` says otherwise.

        :raises ValueError: if the description is missing something.
        """
        if "cwd" not in rec:
            raise ValueError("Job description has no 'cwd'")
        host_work_dir = rec["cwd"]
        docker_image = rec.get("dockerImage")
        mode = ExecutionMode(rec.get("executionMode") or ("contained" if docker_image else "direct"))
        container_work_dir = rec.get("containerOutdir")
        if mode == ExecutionMode.contained and not container_work_dir:
            container_work_dir = DEFAULT_CONTAINER_WORK_DIR

        entries = [StagingEntry.from_dict(item) for item in rec.get("fileitems", [])]
        referenced = collect_dir_entries(rec.get("inputs", {}))
        if referenced:
            stagedir = container_work_dir if mode == ExecutionMode.contained else host_work_dir
            assert stagedir is not None
            entries += PathMapper(referenced, stagedir, separate_dirs=False).entries()

        return cls(
            entries=entries,
            host_work_dir=host_work_dir,
            container_work_dir=container_work_dir,
            inplace_update=bool(rec.get("inplaceUpdate", False)),
            execution_mode=mode,
            job_id=rec.get("id"),
            docker_image=docker_image,
            network_access=bool(rec.get("networkaccess", rec.get("networkAccess", False))),
            custom_net=rec.get("customNet"),
            stdout_path=rec.get("stdoutPath"),
            output_bindings=[OutputBinding.from_dict(b) for b in rec.get("outputBindings", [])],
        )

    @property
    def builder_outdir(self) -> str:
        """The work directory as the task sees it."""
        if self.execution_mode == ExecutionMode.contained:
            assert self.container_work_dir is not None
            return self.container_work_dir
        return self.host_work_dir


def load_job_description(path: str) -> dict[str, Any]:
    """Read a job description from a JSON or YAML file."""
    with open(path) as f:
        yaml = YAML(typ="safe")
        rec = yaml.load(f)
    if not isinstance(rec, dict):
        raise ValueError(f"Job description {path} is not a mapping")
    return rec


def load_request(path: str) -> StagingRequest:
    return StagingRequest.from_dict(load_job_description(path))


@dataclass
class StagingResult:
    entries: list[StagingEntry]
    mounts: list[str]
    tmpdir: Optional[str]
    stats: StagingStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "mounts": list(self.mounts),
            "tmpdir": self.tmpdir,
            "stats": {action: self.stats[action] for action in self.stats.ACTIONS},
        }


def stage_job(request: StagingRequest,
              file_manager: Optional[AbstractFileManager] = None,
              streams: Optional[StreamRegistry] = None,
              tmpdir_prefix: Optional[str] = None,
              fetch_threads: int = 4,
              cancel: Optional[Event] = None) -> StagingResult:
    """
    Stage a task invocation in its work directory.

    Any failure leaves the work directory as it is, for the caller to throw
    away.
    """
    logger.info("Staging %i entries for job %s (%s) in %s", len(request.entries), request.job_id or "<unnamed>",
                request.execution_mode.value, request.host_work_dir)
    os.makedirs(request.host_work_dir, exist_ok=True)
    if streams is not None:
        prepare_streamable_outputs(request.output_bindings, request.host_work_dir, streams)

    if request.execution_mode == ExecutionMode.direct:
        executor = StagingExecutor(file_manager=file_manager,
                                   inplace_update=request.inplace_update,
                                   streams=streams,
                                   fetch_threads=fetch_threads,
                                   cancel=cancel)
        staged = executor.apply(request.entries, target_root=request.host_work_dir)
        return StagingResult(staged, [], None, executor.stats)

    planner = ContainerMountPlanner(file_manager=file_manager,
                                    tmpdir_prefix=tmpdir_prefix,
                                    fetch_threads=fetch_threads,
                                    cancel=cancel)
    mounts = planner.plan(request.entries, request.host_work_dir, request.builder_outdir,
                          inplace_update=request.inplace_update)
    return StagingResult(planner.staged, mounts, planner.tmpdir, planner.stats)


def container_command(request: StagingRequest,
                      mounts: list[str],
                      docker_exec: Optional[str] = None,
                      user: Optional[str] = None) -> list[str]:
    """
    Put together the ``docker run`` command line for a contained task, up to
    and including the image. The task's own command goes after it.

    Nothing is run.
    """
    if not request.docker_image:
        raise ValueError("A container command needs an image")
    docker_exec = docker_exec or lookupEnvVar("container engine", "FLOWSTAGE_DOCKER_EXEC", "docker")
    user = user or lookupEnvVar("container user", "FLOWSTAGE_DOCKER_USER", "1001:1001")
    workdir = request.builder_outdir

    command = [docker_exec, "run", "-i"]
    command += mounts
    command.append(f"--workdir={workdir}")
    command.append("--read-only=true")
    if request.stdout_path is not None:
        command.append("--log-driver=none")
    if request.network_access:
        if request.custom_net is not None:
            command.append(f"--net={request.custom_net}")
    else:
        command.append("--net=none")
    command.append("--rm")
    command.append(f"--user={user}")
    command.append(f"--env=HOME={workdir}")
    command.append(f"--env=TMPDIR={CONTAINER_TMP_DIR}")
    command.append(request.docker_image)
    return command


def finish_job(request: StagingRequest,
               result: StagingResult,
               streams: Optional[StreamRegistry] = None,
               compute_checksum: bool = True,
               checksum_algorithm: str = "sha1") -> dict[str, list[dict[str, Any]]]:
    """
    Collect a finished task's outputs and clean up after it.

    Waits for any streams still being copied, then globs the outputs and
    removes the scratch directory of a contained task.
    """
    if streams is not None:
        streams.join_all()
    try:
        return collect_outputs(request.output_bindings,
                               request.host_work_dir,
                               builder_outdir=request.builder_outdir,
                               entries=result.entries,
                               compute_checksum=compute_checksum,
                               checksum_algorithm=checksum_algorithm)
    finally:
        if result.tmpdir is not None:
            logger.debug("Removing scratch directory %s", result.tmpdir)
            robust_rmtree(result.tmpdir)
