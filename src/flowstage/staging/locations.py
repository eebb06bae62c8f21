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
Turning the location strings found in staging entries into something that
can be acted on.

A location is one of three things: a path on this host (given bare or as a
``file:`` URI), a URL to be fetched, or a literal marker (``_:`` followed by
an identifier) for content that so far only exists in memory.
"""
import enum
import logging
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from schema_salad.exceptions import ValidationException
from schema_salad.ref_resolver import uri_file_path

from flowstage.cwl.objects import LITERAL_PREFIX
from flowstage.exceptions import InvalidLocation
from flowstage.lib.io import STANDARD_SCHEMES, is_file_url
from flowstage.lib.plugins import get_plugin_names

logger = logging.getLogger(__name__)


class LocationKind(enum.Enum):
    local = "local"
    remote = "remote"
    literal = "literal"


@dataclass(frozen=True)
class ResolvedLocation:
    kind: LocationKind
    # The host path, the URL, or the literal marker, depending on kind.
    value: str

    @property
    def path(self) -> Optional[str]:
        """The host path, for local locations only."""
        return self.value if self.kind == LocationKind.local else None

    def is_local(self) -> bool:
        return self.kind == LocationKind.local

    def is_remote(self) -> bool:
        return self.kind == LocationKind.remote

    def is_literal(self) -> bool:
        return self.kind == LocationKind.literal


def known_schemes() -> set[str]:
    """URL schemes that something on this install knows how to fetch."""
    schemes = {s.rstrip(":") for s in STANDARD_SCHEMES}
    schemes.update(get_plugin_names("url_access"))
    schemes.discard("file")
    return schemes


def resolve(location: str) -> ResolvedLocation:
    """
    Classify a location string.

    ``file:`` URIs with no authority, or with ``localhost``, become bare host
    paths. Bare absolute paths are returned unchanged. Literal markers are
    passed through so that later steps know to write the content rather than
    copy anything.

    :raises InvalidLocation: if the location is not an absolute path, a
        ``file:`` URI on this host, a literal marker, or a URL with a known
        scheme.
    """
    if not location:
        raise InvalidLocation(repr(location), "empty location")

    if location.startswith(LITERAL_PREFIX):
        return ResolvedLocation(LocationKind.literal, location)

    if is_file_url(location):
        split = urlsplit(location)
        if split.netloc not in ("", "localhost"):
            raise InvalidLocation(location, f"file URI names another host '{split.netloc}'")
        try:
            path = uri_file_path(location)
        except ValidationException as e:
            raise InvalidLocation(location, str(e)) from e
        if not os.path.isabs(path):
            raise InvalidLocation(location, "file URI does not hold an absolute path")
        return ResolvedLocation(LocationKind.local, path)

    if os.path.isabs(location):
        return ResolvedLocation(LocationKind.local, location)

    scheme = urlsplit(location).scheme.lower()
    if scheme:
        if scheme in known_schemes():
            return ResolvedLocation(LocationKind.remote, location)
        raise InvalidLocation(location, f"unknown URI scheme '{scheme}'")

    raise InvalidLocation(location, "not an absolute path or URI")
