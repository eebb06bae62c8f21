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
import io
import logging
import os

import pytest
from pytest_httpserver import HTTPServer
from schema_salad.ref_resolver import file_uri

from flowstage.lib.exceptions import UnimplementedURLException
from flowstage.lib.url import URLAccess

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.DEBUG)


class TestURLAccess:
    """
    Test URLAccess class handling read, list,
    and checking the size/existence of resources at given URL
    """

    def test_http_url_exists(self, httpserver: HTTPServer) -> None:
        httpserver.expect_request("/some_url").respond_with_data("Yep that's a URL")
        httpserver.expect_request("/missing").respond_with_data("", status=404)
        assert URLAccess.url_exists(httpserver.url_for("/some_url"))
        assert not URLAccess.url_exists(httpserver.url_for("/missing"))

    def test_http_read_from_url(self, httpserver: HTTPServer) -> None:
        httpserver.expect_request("/data.txt").respond_with_data("some data")
        output = io.BytesIO()
        size, executable = URLAccess.read_from_url(httpserver.url_for("/data.txt"), output)
        assert size == len("some data")
        assert not executable
        assert output.getvalue() == b"some data"

    def test_http_open_url(self, httpserver: HTTPServer) -> None:
        httpserver.expect_request("/data.txt").respond_with_data("streamed")
        with URLAccess.open_url(httpserver.url_for("/data.txt")) as readable:
            assert readable.read() == b"streamed"

    def test_http_missing(self, httpserver: HTTPServer) -> None:
        httpserver.expect_request("/gone.txt").respond_with_data("", status=404)
        with pytest.raises(FileNotFoundError):
            URLAccess.read_from_url(httpserver.url_for("/gone.txt"), io.BytesIO())

    def test_http_is_never_a_directory(self, httpserver: HTTPServer) -> None:
        assert not URLAccess.get_is_directory(httpserver.url_for("/anything/"))

    def test_file_urls(self, tmp_path) -> None:
        (tmp_path / "sub").mkdir()
        data = tmp_path / "sub" / "my file.txt"
        data.write_bytes(b"local")
        os.chmod(data, 0o755)
        url = file_uri(str(data))

        assert URLAccess.url_exists(url)
        assert not URLAccess.url_exists(file_uri(str(tmp_path / "nope")))
        assert URLAccess.get_size(url) == 5
        assert URLAccess.get_is_directory(file_uri(str(tmp_path / "sub")))
        assert not URLAccess.get_is_directory(url)

        output = io.BytesIO()
        size, executable = URLAccess.read_from_url(url, output)
        assert (size, executable) == (5, True)
        assert output.getvalue() == b"local"

        (tmp_path / "sub" / "inner").mkdir()
        assert URLAccess.list_url(file_uri(str(tmp_path / "sub"))) == ["inner/", "my%20file.txt"]

    def test_file_url_on_another_host(self) -> None:
        with pytest.raises(RuntimeError):
            URLAccess.url_exists("file://elsewhere/data.txt")

    def test_unknown_scheme(self) -> None:
        with pytest.raises(UnimplementedURLException):
            URLAccess.url_exists("gopher://example.com/data.txt")
