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
Collecting what a task left in its output directory.

Runs after the task, on the side that has to report results upstream: output
bindings are globbed against the host output directory, directories are
listed, and the paths the task saw are mapped back to locations.
"""
import glob
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from schema_salad.ref_resolver import file_uri, uri_file_path

from flowstage.cwl.listing import ListingExpander, LoadListing
from flowstage.cwl.objects import Directory, File, FileOrDirectory
from flowstage.cwl.utils import substitute, visit_file_or_directory_down
from flowstage.exceptions import InvalidOutput, IOFailure
from flowstage.lib.io import ensure_parent_dir, is_fifo
from flowstage.lib.pipes import StreamRegistry
from flowstage.staging.entries import EntryKind, StagingEntry

logger = logging.getLogger(__name__)

# The most loadContents will read from a file.
CONTENT_LIMIT = 64 * 1024


@dataclass
class OutputBinding:
    """Where to find one output of a task, and how much to load about it."""

    name: str
    glob: list[str]
    load_listing: LoadListing = LoadListing.no_listing
    load_contents: bool = False
    secondary_files: list[str] = field(default_factory=list)
    streamable: bool = False

    @classmethod
    def from_dict(cls, rec: dict[str, Any]) -> "OutputBinding":
        patterns = rec.get("glob", [])
        if isinstance(patterns, str):
            patterns = [patterns]
        return cls(
            name=rec["name"],
            glob=list(patterns),
            load_listing=LoadListing(rec.get("loadListing") or "no_listing"),
            load_contents=bool(rec.get("loadContents", False)),
            secondary_files=list(rec.get("secondaryFiles", [])),
            streamable=bool(rec.get("streamable", False)),
        )


def _inside(path: str, parent: str) -> bool:
    parent = parent.rstrip("/")
    return path == parent or path.startswith(parent + "/")


def content_limit_respected_read(path: str) -> str:
    """
    Read a small file for loadContents.

    :raises InvalidOutput: if the file is bigger than the limit.
    """
    with open(path, "rb") as f:
        data = f.read(CONTENT_LIMIT + 1)
    if len(data) > CONTENT_LIMIT:
        raise InvalidOutput(f"File {path} is too large, loadContents limited to {CONTENT_LIMIT} bytes",
                            location=path)
    return data.decode("utf-8")


def prepare_streamable_outputs(bindings: Iterable[OutputBinding], outdir: str, streams: StreamRegistry) -> None:
    """
    Put a named pipe where each streamable output will be written, so that
    consumers can be hooked up to it before the task finishes.
    """
    os.makedirs(outdir, exist_ok=True)
    for binding in bindings:
        if binding.streamable and binding.glob:
            path = os.path.join(outdir, binding.glob[0])
            ensure_parent_dir(path)
            logger.debug("Making %s a stream for output %s", path, binding.name)
            try:
                streams.register_output(path, create=True)
            except OSError as e:
                raise IOFailure("create named pipe", target=path, reason=str(e)) from e


def _relative_pattern(pattern: str, outdir: str, builder_outdir: str) -> str:
    """Turn a glob into one relative to the output directory."""
    if pattern == ".":
        return ""
    for prefix in (outdir, builder_outdir):
        if _inside(pattern, prefix):
            return pattern[len(prefix.rstrip("/")):].lstrip("/")
    if os.path.isabs(pattern):
        raise InvalidOutput(f"Glob pattern {pattern} must be relative or inside the output directory")
    return pattern


def glob_outputs(binding: OutputBinding,
                 outdir: str,
                 builder_outdir: Optional[str] = None,
                 compute_checksum: bool = True,
                 checksum_algorithm: str = "sha1") -> list[FileOrDirectory]:
    """
    Find the files and directories matching an output binding.

    :param outdir: the output directory on this host.
    :param builder_outdir: the same directory as the task saw it. The ``path``
        of each result is given in these terms, ready for :func:`revmap_file`.
    """
    builder_outdir = builder_outdir or outdir
    expander = ListingExpander(binding.load_listing, compute_checksum=compute_checksum,
                               checksum_algorithm=checksum_algorithm)
    results: list[FileOrDirectory] = []
    for pattern in binding.glob:
        relative = _relative_pattern(pattern, outdir, builder_outdir)
        matches = sorted(glob.glob(os.path.join(outdir, relative))) if relative else [outdir]
        logger.debug("Glob %s matched %i paths in %s", pattern, len(matches), outdir)
        for match in matches:
            match = os.path.normpath(match)
            results.append(_describe(match, outdir, builder_outdir, binding, expander))
    return results


def _describe(match: str,
              outdir: str,
              builder_outdir: str,
              binding: OutputBinding,
              expander: ListingExpander) -> FileOrDirectory:
    rel = os.path.relpath(match, outdir)
    builder_path = builder_outdir if rel == "." else os.path.join(builder_outdir, rel)

    if os.path.isdir(match):
        d = Directory(location=file_uri(match), path=builder_path)
        expander.expand(d)
        return d

    if is_fifo(match):
        # What was streamed is gone; leave an empty file in place of the pipe
        logger.debug("Replacing drained named pipe %s with an empty file", match)
        os.unlink(match)
        open(match, "wb").close()

    f = expander.describe_file(match)
    f.path = builder_path
    if binding.load_contents:
        f.contents = content_limit_respected_read(match)
    for sf_pattern in binding.secondary_files:
        sf_path = os.path.join(os.path.dirname(match), substitute(os.path.basename(match), sf_pattern))
        if not os.path.exists(sf_path):
            logger.debug("Secondary file %s of %s is not there", sf_path, match)
            continue
        sf = _describe(sf_path, outdir, builder_outdir, OutputBinding(binding.name, []), expander)
        f.secondary_files.append(sf)
    return f


def revmap_file(builder_outdir: str, outdir: str, obj: FileOrDirectory, entries: Iterable[StagingEntry]) -> None:
    """
    Map the path of an output, as the task saw it, back to a location.

    An output that is really one of the task's read-only inputs passed
    through gets the input's original location. Anything else must be inside
    the output directory.

    :raises InvalidOutput: if the output is neither.
    """
    outdir_uri = file_uri(outdir) if os.path.isabs(outdir) else outdir
    outdir_uri = outdir_uri.rstrip("/")

    if obj.path is None:
        if obj.location.startswith("file://"):
            obj.path = uri_file_path(obj.location)
        else:
            obj.location = f"{outdir_uri}/{obj.location}"
            return

    path = os.path.join(builder_outdir, obj.path)
    obj.path = None
    if obj.basename is None:
        obj.basename = os.path.basename(path)
        if isinstance(obj, File):
            obj.nameroot, obj.nameext = os.path.splitext(obj.basename)

    for entry in entries:
        if entry.target == path and entry.kind in (EntryKind.PlainFile, EntryKind.PlainDirectory):
            obj.location = entry.resolved
            return

    uri = file_uri(path)
    if uri == outdir_uri or uri.startswith(outdir_uri + "/"):
        obj.location = uri
    elif _inside(path, builder_outdir):
        rel = os.path.relpath(path, builder_outdir)
        obj.location = f"{outdir_uri}/{'/'.join(rel.split(os.sep))}"
    else:
        raise InvalidOutput("Output file path must be within designated output directory "
                            "or an input file pass through", location=path)


def collect_outputs(bindings: Iterable[OutputBinding],
                    outdir: str,
                    builder_outdir: Optional[str] = None,
                    entries: Iterable[StagingEntry] = (),
                    compute_checksum: bool = True,
                    checksum_algorithm: str = "sha1") -> dict[str, list[dict[str, Any]]]:
    """
    Collect every output of a finished task.

    :return: for each binding name, the matching File and Directory records
        with their locations mapped back for reporting.
    """
    builder_outdir = builder_outdir or outdir
    entries = list(entries)
    collected: dict[str, list[dict[str, Any]]] = {}
    for binding in bindings:
        found = glob_outputs(binding, outdir, builder_outdir, compute_checksum, checksum_algorithm)
        visit_file_or_directory_down(found, lambda obj: revmap_file(builder_outdir, outdir, obj, entries))
        collected[binding.name] = [obj.to_dict() for obj in found]
        logger.info("Collected %i items for output %s", len(found), binding.name)
    return collected
