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
import pytest

from flowstage.exceptions import DestinationConflict, InvalidLocation
from flowstage.lib.plugins import register_plugin, remove_plugin
from flowstage.staging.entries import EntryKind, StagingEntry
from flowstage.staging.locations import LocationKind, known_schemes, resolve
from flowstage.staging.registry import DestinationRegistry


class TestResolve:
    def test_bare_path(self) -> None:
        loc = resolve("/data/sample.bam")
        assert loc.kind == LocationKind.local
        assert loc.is_local() and not loc.is_remote()
        assert loc.path == "/data/sample.bam"

    def test_file_uri(self) -> None:
        assert resolve("file:///data/my%20sample.bam").value == "/data/my sample.bam"
        assert resolve("file://localhost/data/x").value == "/data/x"

    def test_file_uri_other_host(self) -> None:
        with pytest.raises(InvalidLocation):
            resolve("file://elsewhere/data/x")

    def test_remote(self) -> None:
        assert resolve("ftp://example.com/x").is_remote()
        loc = resolve("https://example.com/data/x.txt")
        assert loc.is_remote()
        assert loc.path is None
        assert loc.value == "https://example.com/data/x.txt"

    def test_literal(self) -> None:
        loc = resolve("_:5f7b2c4e")
        assert loc.is_literal()
        assert loc.value == "_:5f7b2c4e"

    @pytest.mark.parametrize("location", ["", "relative/path.txt", "gopher://example.com/x"])
    def test_invalid(self, location: str) -> None:
        with pytest.raises(InvalidLocation):
            resolve(location)

    def test_plugin_scheme(self) -> None:
        register_plugin("url_access", "toy", lambda: None)
        try:
            assert "toy" in known_schemes()
            assert resolve("toy://bucket/key").is_remote()
        finally:
            remove_plugin("url_access", "toy")
        assert "toy" not in known_schemes()


class TestDestinationRegistry:
    def test_collisions_get_suffixes(self) -> None:
        registry = DestinationRegistry()
        targets = [registry.claim(f"/src/{i}/report.txt", "/work/report.txt")[1] for i in range(4)]
        assert targets == ["/work/report.txt", "/work/report.txt_1", "/work/report.txt_2", "/work/report.txt_3"]
        assert len(registry) == 4
        assert registry.owner("/work/report.txt_2") == "/src/2/report.txt"

    def test_same_source_is_idempotent(self) -> None:
        registry = DestinationRegistry()
        assert registry.claim("/a", "/work/a") == (True, "/work/a")
        assert registry.claim("/a", "/work/a") == (False, "/work/a")
        assert list(registry.items()) == [("/work/a", "/a")]

    def test_suffix_already_taken(self) -> None:
        registry = DestinationRegistry()
        registry.claim("/x", "/work/a_1")
        registry.claim("/y", "/work/a")
        assert registry.claim("/z", "/work/a") == (True, "/work/a_2")

    def test_check(self) -> None:
        registry = DestinationRegistry()
        registry.claim("/a", "/work/a")
        registry.check("/a", "/work/a")
        registry.check("/b", "/work/unclaimed")
        with pytest.raises(DestinationConflict) as exc_info:
            registry.check("/b", "/work/a")
        assert exc_info.value.claimed_by == "/a"
        assert "/work/a" in registry
        assert list(registry) == ["/work/a"]


class TestStagingEntry:
    def test_from_dict(self) -> None:
        entry = StagingEntry.from_dict({"resolved": "/data/a.txt", "target": "/work/a.txt", "type": "File"})
        assert entry.kind == EntryKind.PlainFile
        assert entry.staged
        assert not entry.streamable
        assert entry.to_dict() == {"resolved": "/data/a.txt", "target": "/work/a.txt", "type": "File",
                                   "staged": True, "streamable": False}

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            StagingEntry.from_dict({"resolved": "/a", "target": "/b", "type": "Symlink"})

    def test_missing_field(self) -> None:
        with pytest.raises(ValueError):
            StagingEntry.from_dict({"resolved": "/a", "type": "File"})

    def test_kinds(self) -> None:
        assert EntryKind.CreateWritableFile.is_created()
        assert EntryKind.CreateWritableFile.is_writable()
        assert not EntryKind.CreateFile.is_writable()
        assert EntryKind.WritableDirectory.is_directory()
        assert not EntryKind.WritableFile.is_directory()
        assert not EntryKind.PlainFile.is_writable()
