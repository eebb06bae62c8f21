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
from threading import Event
from typing import IO, Optional
from urllib.parse import ParseResult

import pytest
from pytest_httpserver import HTTPServer
from schema_salad.ref_resolver import file_uri

from flowstage.exceptions import IOFailure, SourceUnavailable
from flowstage.fileManagers import FetchJob
from flowstage.fileManagers.localFileManager import LocalFileManager
from flowstage.lib.plugins import register_plugin, remove_plugin
from flowstage.lib.url import URLAccess
from flowstage.test import FlowstageTest

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.DEBUG)


class LocalFileManagerTest(FlowstageTest):
    """Tests for fetching and copying on a worker with a shared filesystem."""

    def setUp(self) -> None:
        super().setUp()
        self.tmp = self._createTempDir()
        self.manager = LocalFileManager()

    def test_need_download(self) -> None:
        assert not self.manager.need_download("/data/input.txt")
        assert not self.manager.need_download("file:///data/input.txt")
        assert not self.manager.need_download("_:1234")
        assert self.manager.need_download("https://example.com/input.txt")
        assert self.manager.need_download("ftp://example.com/input.txt")

    def test_download_file_url(self) -> None:
        src = self._writeFile(os.path.join(self.tmp, "src", "input.txt"), "input data")
        os.chmod(src, 0o755)
        dest = os.path.join(self.tmp, "fetched", "input.txt")
        assert self.manager.download(file_uri(src), dest) == len("input data")
        assert self._readFile(dest) == "input data"
        assert os.access(dest, os.X_OK)

    def test_download_directory_url(self) -> None:
        src = os.path.join(self.tmp, "src")
        self._writeFile(os.path.join(src, "a.txt"), "a")
        self._writeFile(os.path.join(src, "deeper", "b c.txt"), "bc")
        dest = os.path.join(self.tmp, "fetched")
        assert self.manager.download(file_uri(src), dest) == 3
        assert self._readFile(os.path.join(dest, "a.txt")) == "a"
        assert self._readFile(os.path.join(dest, "deeper", "b c.txt")) == "bc"

    def test_download_missing(self) -> None:
        with pytest.raises(SourceUnavailable):
            self.manager.download(file_uri(os.path.join(self.tmp, "nope.txt")), os.path.join(self.tmp, "dest.txt"))
        assert os.listdir(self.tmp) == []

    def test_download_unknown_scheme(self) -> None:
        with pytest.raises(SourceUnavailable):
            self.manager.download("ftp://example.com/input.txt", os.path.join(self.tmp, "dest.txt"))

    def test_download_all(self) -> None:
        jobs = []
        for i in range(6):
            src = self._writeFile(os.path.join(self.tmp, "src", f"{i}.txt"), "x" * i)
            jobs.append(FetchJob(file_uri(src), os.path.join(self.tmp, "dest", f"{i}.txt")))
        # The same fetch twice only happens once
        jobs.append(jobs[0])
        assert self.manager.download_all(jobs, threads=3) == sum(range(6))
        for i in range(6):
            assert self._readFile(os.path.join(self.tmp, "dest", f"{i}.txt")) == "x" * i

    def test_download_all_reports_failure(self) -> None:
        good = self._writeFile(os.path.join(self.tmp, "src", "good.txt"), "good")
        jobs = [FetchJob(file_uri(os.path.join(self.tmp, "src", "bad.txt")), os.path.join(self.tmp, "dest", "bad.txt")),
                FetchJob(file_uri(good), os.path.join(self.tmp, "dest", "good.txt"))]
        cancel = Event()
        with pytest.raises(SourceUnavailable):
            self.manager.download_all(jobs, threads=1, cancel=cancel)
        # Nothing new starts after a failure, but the task was not cancelled
        assert not os.path.exists(os.path.join(self.tmp, "dest", "good.txt"))
        assert not cancel.is_set()

    def test_download_all_cancelled(self) -> None:
        src = self._writeFile(os.path.join(self.tmp, "src", "input.txt"), "data")
        cancel = Event()
        cancel.set()
        with pytest.raises(IOFailure):
            self.manager.download_all([FetchJob(file_uri(src), os.path.join(self.tmp, "dest.txt"))], cancel=cancel)
        assert not os.path.exists(os.path.join(self.tmp, "dest.txt"))


def test_download_http(httpserver: HTTPServer, tmp_path) -> None:
    httpserver.expect_request("/inputs/reads.fq").respond_with_data("@read\nACGT\n")
    httpserver.expect_request("/inputs/missing.fq").respond_with_data("", status=404)
    manager = LocalFileManager()

    dest = str(tmp_path / "reads.fq")
    manager.download(httpserver.url_for("/inputs/reads.fq"), dest)
    assert open(dest).read() == "@read\nACGT\n"

    with pytest.raises(SourceUnavailable):
        manager.download(httpserver.url_for("/inputs/missing.fq"), str(tmp_path / "missing.fq"))
    assert not os.path.exists(tmp_path / "missing.fq")


class TruncatingMirror(URLAccess):
    """A ``mirror://`` source that promises more bytes than it sends."""

    @classmethod
    def _supports_url(cls, url: ParseResult) -> bool:
        return url.scheme == "mirror"

    @classmethod
    def _url_exists(cls, url: ParseResult) -> bool:
        return True

    @classmethod
    def _get_is_directory(cls, url: ParseResult) -> bool:
        return False

    @classmethod
    def _get_size(cls, url: ParseResult) -> Optional[int]:
        return 100

    @classmethod
    def _read_from_url(cls, url: ParseResult, writable: IO[bytes]) -> tuple[int, bool]:
        writable.write(b"ACGT")
        return 4, False


def test_short_download_is_a_failure(tmp_path) -> None:
    register_plugin("url_access", "mirror", lambda: TruncatingMirror)
    try:
        with pytest.raises(IOFailure):
            LocalFileManager().download("mirror://ref/genome.fa", str(tmp_path / "genome.fa"))
    finally:
        remove_plugin("url_access", "mirror")
    assert os.listdir(tmp_path) == []
