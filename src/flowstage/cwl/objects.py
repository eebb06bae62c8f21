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
Typed stand-ins for the CWL ``File`` and ``Directory`` records.

Job descriptions arrive as JSON-like dicts. They are turned into these
objects once, at the edge, so that everything else can ask an object what it
is instead of probing its keys.
"""
import logging
import os
import posixpath
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# Locations with this prefix name content that only exists in memory.
LITERAL_PREFIX = "_:"

# Keys that are modelled as fields; anything else is carried along untouched.
_FILE_KEYS = {"class", "location", "path", "basename", "dirname", "nameroot", "nameext",
              "checksum", "size", "contents", "format", "secondaryFiles", "writable"}
_DIRECTORY_KEYS = {"class", "location", "path", "basename", "listing", "writable"}


def is_literal_location(location: Optional[str]) -> bool:
    return location is not None and location.startswith(LITERAL_PREFIX)


def new_literal_location() -> str:
    return f"{LITERAL_PREFIX}{uuid.uuid4()}"


def _basename_of(location: str) -> str:
    """The last path component of a location, ignoring any trailing slash."""
    return posixpath.basename(location.rstrip("/"))


class FileOrDirectory:
    """Behaviour shared by :class:`File` and :class:`Directory`."""

    cwl_class = ""
    location: str
    basename: Optional[str]
    path: Optional[str]
    writable: bool
    extra: dict[str, Any]

    def is_file(self) -> bool:
        return False

    def is_directory(self) -> bool:
        return False

    def get_listing(self) -> Optional[list["FileOrDirectory"]]:
        """The enumerated children, or None if there are none or they are not known yet."""
        return None

    def is_literal(self) -> bool:
        """True if this object is not backed by anything but memory yet."""
        return is_literal_location(self.location)

    def children(self) -> list["FileOrDirectory"]:
        """Objects nested directly inside this one."""
        return []

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError()

    @staticmethod
    def from_dict(rec: dict[str, Any]) -> "FileOrDirectory":
        """
        Build the right kind of object from a CWL record.

        :raises ValueError: if the record is not a File or a Directory.
        """
        cls_name = rec.get("class")
        if cls_name == "File":
            return File.from_dict(rec)
        elif cls_name == "Directory":
            return Directory.from_dict(rec)
        raise ValueError(f"Not a File or Directory: class is {cls_name!r}")


@dataclass
class File(FileOrDirectory):
    location: str
    basename: Optional[str] = None
    path: Optional[str] = None
    dirname: Optional[str] = None
    nameroot: Optional[str] = None
    nameext: Optional[str] = None
    checksum: Optional[str] = None
    size: Optional[int] = None
    contents: Optional[str] = None
    format: Optional[str] = None
    secondary_files: list[FileOrDirectory] = field(default_factory=list)
    writable: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    cwl_class = "File"

    def __post_init__(self) -> None:
        if self.basename is None and not self.is_literal():
            self.basename = _basename_of(self.path or self.location)
        if self.basename is not None and self.nameroot is None:
            self.nameroot, self.nameext = os.path.splitext(self.basename)

    def is_file(self) -> bool:
        return True

    def children(self) -> list[FileOrDirectory]:
        return list(self.secondary_files)

    @classmethod
    def from_dict(cls, rec: dict[str, Any]) -> "File":
        location = rec.get("location") or rec.get("path")
        if location is None:
            if "contents" not in rec:
                raise ValueError("A File needs a location, a path, or contents")
            # A file literal: it only has contents so far.
            location = new_literal_location()
        return cls(
            location=location,
            basename=rec.get("basename"),
            path=rec.get("path"),
            dirname=rec.get("dirname"),
            nameroot=rec.get("nameroot"),
            nameext=rec.get("nameext"),
            checksum=rec.get("checksum"),
            size=rec.get("size"),
            contents=rec.get("contents"),
            format=rec.get("format"),
            secondary_files=[FileOrDirectory.from_dict(s) for s in rec.get("secondaryFiles", [])],
            writable=bool(rec.get("writable", False)),
            extra={k: v for k, v in rec.items() if k not in _FILE_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        rec: dict[str, Any] = {"class": "File", "location": self.location}
        for key, value in (("path", self.path), ("basename", self.basename), ("dirname", self.dirname),
                           ("nameroot", self.nameroot), ("nameext", self.nameext),
                           ("checksum", self.checksum), ("size", self.size),
                           ("contents", self.contents), ("format", self.format)):
            if value is not None:
                rec[key] = value
        if self.secondary_files:
            rec["secondaryFiles"] = [s.to_dict() for s in self.secondary_files]
        if self.writable:
            rec["writable"] = True
        rec.update(self.extra)
        return rec


@dataclass
class Directory(FileOrDirectory):
    location: str
    basename: Optional[str] = None
    path: Optional[str] = None
    listing: Optional[list[FileOrDirectory]] = None
    writable: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    cwl_class = "Directory"

    def __post_init__(self) -> None:
        if self.basename is None and not self.is_literal():
            self.basename = _basename_of(self.path or self.location)

    def is_directory(self) -> bool:
        return True

    def get_listing(self) -> Optional[list[FileOrDirectory]]:
        return self.listing

    def children(self) -> list[FileOrDirectory]:
        return list(self.listing or [])

    def set_listing(self, listing: list[FileOrDirectory]) -> None:
        """Replace the listing wholesale; a listing is never appended to."""
        self.listing = list(listing)

    @classmethod
    def from_dict(cls, rec: dict[str, Any]) -> "Directory":
        location = rec.get("location") or rec.get("path")
        if location is None:
            if "listing" not in rec:
                raise ValueError("A Directory needs a location, a path, or a listing")
            # A directory literal, built up from its listing.
            location = new_literal_location()
        listing = rec.get("listing")
        return cls(
            location=location,
            basename=rec.get("basename"),
            path=rec.get("path"),
            listing=[FileOrDirectory.from_dict(item) for item in listing] if listing is not None else None,
            writable=bool(rec.get("writable", False)),
            extra={k: v for k, v in rec.items() if k not in _DIRECTORY_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        rec: dict[str, Any] = {"class": "Directory", "location": self.location}
        if self.path is not None:
            rec["path"] = self.path
        if self.basename is not None:
            rec["basename"] = self.basename
        if self.listing is not None:
            rec["listing"] = [item.to_dict() for item in self.listing]
        if self.writable:
            rec["writable"] = True
        rec.update(self.extra)
        return rec


CWLObjectType = Union[File, Directory]
