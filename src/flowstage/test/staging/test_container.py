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

import pytest
from pytest_httpserver import HTTPServer

from flowstage.exceptions import SourceUnavailable
from flowstage.staging.container import CONTAINER_TMP_DIR, ContainerMountPlanner, MountDeclaration
from flowstage.staging.entries import EntryKind, StagingEntry
from flowstage.test import FlowstageTest

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.DEBUG)

TASK_DIR = "/var/task"


def bind(source: str, target: str, read_only: bool = False) -> str:
    return f"--mount=type=bind,source={source},target={target}" + (",readonly" if read_only else "")


class ContainerMountPlannerTest(FlowstageTest):
    """Tests for working out the bind mounts of a contained task."""

    def setUp(self) -> None:
        super().setUp()
        root = self._createTempDir()
        self.src = os.path.join(root, "src")
        self.host = os.path.join(root, "w")
        # Paths outside the work directory are the same on both sides
        self.outside = os.path.join(root, "outside")
        self.scratch = os.path.join(root, "scratch")
        for d in (self.src, self.host, self.outside, self.scratch):
            os.makedirs(d)
        self.planner = ContainerMountPlanner(tmpdir_prefix=self.scratch)

    def plan(self, *entries: StagingEntry, inplace_update: bool = False) -> list[str]:
        return self.planner.plan(list(entries), self.host, TASK_DIR, inplace_update=inplace_update)

    def test_work_dir_and_tmp_come_first(self) -> None:
        mounts = self.plan()
        tmpdir = self.planner.tmpdir
        assert tmpdir is not None
        assert os.path.isdir(tmpdir)
        assert os.path.dirname(tmpdir) == self.scratch
        assert os.path.basename(tmpdir).startswith("flowstage-tmpdir")
        assert mounts == [bind(self.host, TASK_DIR), bind(tmpdir, CONTAINER_TMP_DIR)]

    def test_plain_file_outside_work_dir(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        mounts = self.plan(StagingEntry(a, "/var/lib/inputs/a.txt", EntryKind.PlainFile))
        assert mounts[2:] == [bind(a, "/var/lib/inputs/a.txt", read_only=True)]
        assert self.planner.stats["mount"] == 3

    def test_plain_file_inside_work_dir(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        mounts = self.plan(StagingEntry(a, f"{TASK_DIR}/inputs/a.txt", EntryKind.PlainFile))
        assert mounts[2:] == [bind(a, f"{TASK_DIR}/inputs/a.txt", read_only=True)]
        # The host sees it in the work directory too
        assert os.readlink(os.path.join(self.host, "inputs", "a.txt")) == a

    def test_relative_target_is_in_work_dir(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        self.plan(StagingEntry(a, "a.txt", EntryKind.PlainFile))
        assert self.planner.staged[0].target == f"{TASK_DIR}/a.txt"
        assert os.path.islink(os.path.join(self.host, "a.txt"))

    def test_inplace_update_mounts_writable(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        b = self._writeFile(os.path.join(self.src, "b.txt"), "b")
        mounts = self.plan(StagingEntry(a, "/var/lib/inputs/a.txt", EntryKind.PlainFile),
                           StagingEntry(b, "/var/lib/inputs/b.txt", EntryKind.WritableFile),
                           inplace_update=True)
        assert mounts[2:] == [bind(a, "/var/lib/inputs/a.txt"), bind(b, "/var/lib/inputs/b.txt")]

    def test_writable_directory_in_work_dir_is_copied(self) -> None:
        self._writeFile(os.path.join(self.src, "db", "meta.json"), "{}")
        mounts = self.plan(StagingEntry(os.path.join(self.src, "db"), f"{TASK_DIR}/db", EntryKind.WritableDirectory))
        # The work directory mount already covers the copy
        assert len(mounts) == 2
        copied = os.path.join(self.host, "db")
        assert not os.path.islink(copied)
        assert self._readFile(os.path.join(copied, "meta.json")) == "{}"

    def test_writable_file_outside_work_dir_is_copied_and_mounted(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        target = os.path.join(self.outside, "a.txt")
        mounts = self.plan(StagingEntry(a, target, EntryKind.WritableFile))
        assert mounts[2:] == [bind(target, target)]
        assert not os.path.islink(target)
        assert self._readFile(target) == "a"

    def test_create_file_inside_work_dir(self) -> None:
        mounts = self.plan(StagingEntry("hello", f"{TASK_DIR}/greeting.txt", EntryKind.CreateFile))
        assert len(mounts) == 2
        assert self._readFile(os.path.join(self.host, "greeting.txt")) == "hello"

    def test_create_file_outside_work_dir(self) -> None:
        conf = os.path.join(self.outside, "conf.ini")
        notes = os.path.join(self.outside, "notes.txt")
        mounts = self.plan(StagingEntry("[main]\n", conf, EntryKind.CreateFile),
                           StagingEntry("", notes, EntryKind.CreateWritableFile))
        assert mounts[2:] == [bind(conf, conf, read_only=True), bind(notes, notes)]
        assert self._readFile(conf) == "[main]\n"

    def test_literal_directory_outside_work_dir(self) -> None:
        target = os.path.join(self.outside, "empty")
        mounts = self.plan(StagingEntry("_:9d8e", target, EntryKind.PlainDirectory))
        assert os.path.isdir(target)
        assert mounts[2:] == [bind(target, target, read_only=True)]

    def test_writable_file_inplace_inside_work_dir(self) -> None:
        a = self._writeFile(os.path.join(self.src, "counts.tsv"), "0")
        mounts = self.plan(StagingEntry(a, f"{TASK_DIR}/counts.tsv", EntryKind.WritableFile), inplace_update=True)
        assert mounts[2:] == [bind(a, f"{TASK_DIR}/counts.tsv")]
        # The host sees the original through a link in the work directory
        assert os.readlink(os.path.join(self.host, "counts.tsv")) == a

    def test_literal_writable_directory_inside_work_dir(self) -> None:
        mounts = self.plan(StagingEntry("_:5c1f", f"{TASK_DIR}/results", EntryKind.WritableDirectory))
        assert mounts[2:] == []
        made = os.path.join(self.host, "results")
        assert os.path.isdir(made)
        assert not os.path.islink(made)

    def test_literal_writable_directory_outside_work_dir(self) -> None:
        target = os.path.join(self.outside, "results")
        mounts = self.plan(StagingEntry("_:5c1f", target, EntryKind.WritableDirectory))
        assert mounts[2:] == [bind(target, target)]
        assert os.path.isdir(target)

    def test_writable_directory_inplace_mounts_original(self) -> None:
        db = os.path.join(self.src, "db")
        self._writeFile(os.path.join(db, "meta.json"), "{}")
        mounts = self.plan(StagingEntry(db, "/var/lib/db", EntryKind.WritableDirectory), inplace_update=True)
        assert mounts[2:] == [bind(db, "/var/lib/db")]
        # Nothing is copied
        assert os.listdir(self.host) == []

    def test_writable_directory_outside_work_dir_is_copied_and_mounted(self) -> None:
        db = os.path.join(self.src, "db")
        self._writeFile(os.path.join(db, "meta.json"), "{}")
        target = os.path.join(self.outside, "db")
        mounts = self.plan(StagingEntry(db, target, EntryKind.WritableDirectory))
        assert mounts[2:] == [bind(target, target)]
        assert not os.path.islink(target)
        assert self._readFile(os.path.join(target, "meta.json")) == "{}"

    def test_literal_directory_inside_work_dir(self) -> None:
        mounts = self.plan(StagingEntry("_:77aa", f"{TASK_DIR}/empty", EntryKind.PlainDirectory))
        assert mounts[2:] == []
        assert os.path.isdir(os.path.join(self.host, "empty"))

    def test_root_as_container_work_dir(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        mounts = self.planner.plan([StagingEntry(a, "/inputs/a.txt", EntryKind.PlainFile)], self.host, "/")
        assert mounts[0] == bind(self.host, "/")
        assert mounts[2:] == [bind(a, "/inputs/a.txt", read_only=True)]
        assert os.readlink(os.path.join(self.host, "inputs", "a.txt")) == a
        assert self.planner.host_path("/") == self.host

    def test_one_mount_per_target(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a", "report.txt"), "a")
        b = self._writeFile(os.path.join(self.src, "b", "report.txt"), "b")
        mounts = self.plan(StagingEntry(a, "/inputs/report.txt", EntryKind.PlainFile),
                           StagingEntry(a, "/inputs/report.txt", EntryKind.PlainFile),
                           StagingEntry(b, "/inputs/report.txt", EntryKind.PlainFile))
        assert mounts[2:] == [bind(a, "/inputs/report.txt", read_only=True),
                              bind(b, "/inputs/report.txt_1", read_only=True)]
        assert [e.target for e in self.planner.staged] == ["/inputs/report.txt", "/inputs/report.txt",
                                                           "/inputs/report.txt_1"]
        assert self.planner.stats["skip"] == 1

    def test_missing_source(self) -> None:
        with pytest.raises(SourceUnavailable):
            self.plan(StagingEntry(os.path.join(self.src, "missing.txt"), "/inputs/missing.txt",
                                   EntryKind.PlainFile))

    def test_failed_plan_removes_scratch_dir(self) -> None:
        a = self._writeFile(os.path.join(self.src, "a.txt"), "a")
        with pytest.raises(SourceUnavailable):
            self.plan(StagingEntry(a, f"{TASK_DIR}/a.txt", EntryKind.PlainFile),
                      StagingEntry(os.path.join(self.src, "missing.txt"), f"{TASK_DIR}/missing.txt",
                                   EntryKind.PlainFile))
        assert os.listdir(self.scratch) == []
        assert self.planner.tmpdir is None


class MountDeclarationTest(FlowstageTest):
    def test_forms(self) -> None:
        mount = MountDeclaration("/data/ref", "/ref", read_only=True)
        assert str(mount) == "--mount=type=bind,source=/data/ref,target=/ref,readonly"
        assert mount.to_volume() == {"/data/ref": {"bind": "/ref", "mode": "ro"}}
        docker_mount = mount.to_docker_mount()
        assert docker_mount["Source"] == "/data/ref"
        assert docker_mount["Target"] == "/ref"
        assert docker_mount["Type"] == "bind"
        assert docker_mount["ReadOnly"] is True
        assert MountDeclaration("/a", "/b").to_volume() == {"/a": {"bind": "/b", "mode": "rw"}}


def test_remote_input_is_fetched_into_work_dir(httpserver: HTTPServer, tmp_path) -> None:
    httpserver.expect_request("/ref/genome.fa").respond_with_data(">chr1\n")
    httpserver.expect_request("/ref/genome.fa.fai").respond_with_data("chr1\t0\n")
    host = tmp_path / "w"
    outside = tmp_path / "outside"
    outside.mkdir()
    planner = ContainerMountPlanner(tmpdir_prefix=str(tmp_path))
    mounts = planner.plan([StagingEntry(httpserver.url_for("/ref/genome.fa"), f"{TASK_DIR}/genome.fa",
                                        EntryKind.PlainFile),
                           StagingEntry(httpserver.url_for("/ref/genome.fa.fai"), str(outside / "genome.fa.fai"),
                                        EntryKind.PlainFile)],
                          str(host), TASK_DIR)
    assert (host / "genome.fa").read_text() == ">chr1\n"
    # Fetched inputs are still mounted read-only over their copy
    assert mounts[2:] == [bind(str(host / "genome.fa"), f"{TASK_DIR}/genome.fa", read_only=True),
                          bind(str(outside / "genome.fa.fai"), str(outside / "genome.fa.fai"), read_only=True)]
    assert planner.stats["download"] == 2
