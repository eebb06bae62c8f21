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
import os
import stat
from typing import Optional

from schema_salad.ref_resolver import file_uri

from flowstage.cwl.objects import Directory, File, FileOrDirectory
from flowstage.exceptions import IOFailure, SourceUnavailable
from flowstage.lib.checksum import compute_checksum_for_file
from flowstage.staging.locations import LocationKind, resolve

logger = logging.getLogger(__name__)


class LoadListing(enum.Enum):
    """How much of a directory's contents to enumerate."""

    no_listing = "no_listing"
    shallow_listing = "shallow_listing"
    deep_listing = "deep_listing"


class ListingExpander:
    """
    Fills in the ``listing`` of directories that exist on this host.

    A directory whose listing is already set is left exactly as it is, so
    expanding the same directory twice changes nothing the second time.
    """

    def __init__(self,
                 load_listing: LoadListing = LoadListing.deep_listing,
                 compute_checksum: bool = True,
                 checksum_algorithm: str = "sha1") -> None:
        self.load_listing = load_listing
        self.compute_checksum = compute_checksum
        self.checksum_algorithm = checksum_algorithm

    def expand(self, directory: Directory) -> None:
        if self.load_listing == LoadListing.no_listing:
            return
        self._expand(directory, recursive=self.load_listing == LoadListing.deep_listing)

    def _expand(self, directory: Directory, recursive: bool) -> None:
        if directory.listing is not None:
            logger.debug("Listing of %s is already known", directory.location)
            return

        resolved = resolve(directory.location)
        if resolved.kind == LocationKind.literal:
            # Nothing on disk to look at
            directory.set_listing([])
            return
        if resolved.kind != LocationKind.local:
            raise SourceUnavailable(directory.location, reason="only directories on this host can be listed")

        path = resolved.path
        try:
            names = sorted(os.listdir(path))
        except FileNotFoundError as e:
            raise SourceUnavailable(directory.location, reason=str(e)) from e
        except OSError as e:
            raise IOFailure("list directory", target=path, location=directory.location, reason=str(e)) from e

        listing: list[FileOrDirectory] = []
        for name in names:
            child_path = os.path.join(path, name)
            if os.path.isdir(child_path):
                child_dir = Directory(location=file_uri(child_path), basename=name)
                if recursive:
                    self._expand(child_dir, recursive=True)
                listing.append(child_dir)
            else:
                listing.append(self.describe_file(child_path, name))
        directory.set_listing(listing)
        logger.debug("Listed %i entries in %s", len(listing), path)

    def describe_file(self, path: str, basename: Optional[str] = None) -> File:
        """Make a File for something on disk, with its size and checksum."""
        f = File(location=file_uri(path), basename=basename or os.path.basename(path))
        try:
            st = os.stat(path)
        except FileNotFoundError:
            # Dangling symlink
            return f
        except OSError as e:
            raise IOFailure("stat", target=path, reason=str(e)) from e
        # Pipes and other special files have no stable content to hash
        if stat.S_ISREG(st.st_mode):
            f.size = st.st_size
            if self.compute_checksum:
                f.checksum = compute_checksum_for_file(path, algorithm=self.checksum_algorithm)
        return f

