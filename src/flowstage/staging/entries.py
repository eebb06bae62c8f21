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
import enum
import logging
from dataclasses import dataclass, replace
from typing import Any

logger = logging.getLogger(__name__)


class EntryKind(enum.Enum):
    """
    What a staging entry puts at its target.

    The values are the type names used on the wire, which are the same ones
    cwltool's path mapper uses.
    """

    PlainFile = "File"
    PlainDirectory = "Directory"
    CreateFile = "CreateFile"
    CreateWritableFile = "CreateWritableFile"
    WritableFile = "WritableFile"
    WritableDirectory = "WritableDirectory"

    def is_writable(self) -> bool:
        """True for kinds whose target the task is allowed to change."""
        return self in (EntryKind.WritableFile, EntryKind.WritableDirectory, EntryKind.CreateWritableFile)

    def is_created(self) -> bool:
        """True for kinds whose content is written at stage time instead of copied."""
        return self in (EntryKind.CreateFile, EntryKind.CreateWritableFile)

    def is_directory(self) -> bool:
        return self in (EntryKind.PlainDirectory, EntryKind.WritableDirectory)


@dataclass(frozen=True)
class StagingEntry:
    """
    One thing to make visible at one path.

    For the ``Create*`` kinds, ``resolved`` holds the content itself rather
    than a reference to it.
    """

    resolved: str
    target: str
    kind: EntryKind
    staged: bool = True
    streamable: bool = False

    def with_target(self, target: str) -> "StagingEntry":
        return replace(self, target=target)

    @classmethod
    def from_dict(cls, rec: dict[str, Any]) -> "StagingEntry":
        """
        Read an entry in its wire form, a mapping with ``resolved``,
        ``target``, ``type`` and optionally ``staged`` and ``streamable``.

        :raises ValueError: if a field is missing or the type is unknown.
        """
        for key in ("resolved", "target", "type"):
            if key not in rec:
                raise ValueError(f"Staging entry is missing '{key}': {rec!r}")
        try:
            kind = EntryKind(rec["type"])
        except ValueError:
            raise ValueError(f"Unknown staging entry type '{rec['type']}'") from None
        return cls(
            resolved=rec["resolved"],
            target=rec["target"],
            kind=kind,
            staged=bool(rec.get("staged", True)),
            streamable=bool(rec.get("streamable", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved": self.resolved,
            "target": self.target,
            "type": self.kind.value,
            "staged": self.staged,
            "streamable": self.streamable,
        }
