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
"""Utility functions for walking CWL File and Directory objects."""

import logging
from collections.abc import Iterable, Iterator, MutableMapping, MutableSequence, ValuesView
from typing import Any, Callable, TypeVar

from flowstage.cwl.objects import FileOrDirectory

logger = logging.getLogger(__name__)


def iter_top_records(rec: Any, classes: Iterable[str]) -> Iterator[MutableMapping[str, Any]]:
    """
    Yield the outermost records in JSON-like data whose ``class`` is one of
    the given names. Nothing inside a yielded record is searched.
    """
    if isinstance(rec, MutableMapping):
        if rec.get("class") in classes:
            yield rec
            return
        rec = rec.values()
    if isinstance(rec, (MutableSequence, ValuesView)):
        for item in rec:
            yield from iter_top_records(item, classes)


def collect_dir_entries(rec: Any) -> list[FileOrDirectory]:
    """
    Find every top-level File and Directory record in some JSON-like data,
    however deeply nested, and convert each to its typed object.
    """
    return [FileOrDirectory.from_dict(r) for r in iter_top_records(rec, ("File", "Directory"))]


def visit_file_or_directory_down(objs: Iterable[FileOrDirectory], op: Callable[[FileOrDirectory], Any]) -> None:
    """Apply the operation to each object, then to what is nested in it."""
    for obj in objs:
        op(obj)
        visit_file_or_directory_down(obj.children(), op)


DownT = TypeVar("DownT")
UpT = TypeVar("UpT")


def visit_file_or_directory_and_reduce(
    objs: Iterable[FileOrDirectory],
    op_down: Callable[[FileOrDirectory], DownT],
    op_up: Callable[[FileOrDirectory, DownT, list[UpT]], UpT],
) -> list[UpT]:
    """
    Fold a tree of objects.

    ``op_down`` sees each object before its children. ``op_up`` sees it after
    them, along with what ``op_down`` returned for it and what ``op_up``
    returned for each child.

    :returns: what ``op_up`` returned for each of the given objects.
    """
    return [op_up(obj, op_down(obj), visit_file_or_directory_and_reduce(obj.children(), op_down, op_up))
            for obj in objs]


def substitute(value: str, replace: str) -> str:
    """
    Apply a secondary file pattern to the basename of a primary file.

    Each leading ``^`` strips one extension off the value before the rest of
    the pattern is appended.

    >>> substitute("reads.bam", ".bai")
    'reads.bam.bai'
    >>> substitute("reads.bam", "^.bai")
    'reads.bai'
    >>> substitute("reads", "^^.idx")
    'reads.idx'
    """
    if replace.startswith("^"):
        dot = value.rfind(".")
        if dot != -1:
            return substitute(value[:dot], replace[1:])
        return value + replace.lstrip("^")
    return value + replace
