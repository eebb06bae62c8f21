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
import stat
from urllib.parse import unquote, urljoin, urlparse

import requests.exceptions

from flowstage.exceptions import IOFailure, SourceUnavailable
from flowstage.fileManagers.abstractFileManager import AbstractFileManager
from flowstage.lib.exceptions import UnimplementedURLException
from flowstage.lib.io import AtomicFileCreate, copy_file, copy_tree, ensure_parent_dir
from flowstage.lib.url import URLAccess

logger = logging.getLogger(__name__)


class LocalFileManager(AbstractFileManager):
    """
    File manager for a worker that shares a filesystem with the orchestrator.

    Bare paths and file: URLs are read where they are. Anything with another
    scheme is fetched through :class:`flowstage.lib.url.URLAccess`.
    """

    def need_download(self, location: str) -> bool:
        if location.startswith('_:'):
            return False
        scheme = urlparse(location).scheme.lower()
        return scheme not in ('', 'file')

    def download(self, location: str, dest: str) -> int:
        """
        Fetch a file, or every file under a listable directory, to dest.

        A file that comes back shorter than the size the source reported is a
        failed fetch, and nothing is left at dest.
        """
        try:
            if not URLAccess.url_exists(location):
                raise FileNotFoundError(f"Nothing found at {location}")
            if URLAccess.get_is_directory(location):
                return self._download_directory(location, dest)
            expected = URLAccess.get_size(location)
            ensure_parent_dir(dest)
            with AtomicFileCreate(dest) as tmp_path:
                with open(tmp_path, 'wb') as writable:
                    size, executable = URLAccess.read_from_url(location, writable)
                if expected is not None and size < expected:
                    raise IOFailure('download', target=dest, location=location,
                                    reason=f'got {size} of {expected} bytes')
                if executable:
                    os.chmod(tmp_path, os.stat(tmp_path).st_mode | stat.S_IXUSR)
        except (FileNotFoundError, UnimplementedURLException, requests.exceptions.RequestException) as e:
            raise SourceUnavailable(location, target=dest, reason=str(e)) from e
        except OSError as e:
            raise IOFailure('download', target=dest, location=location, reason=str(e)) from e
        logger.debug('Downloaded %i bytes from %s to %s', size, location, dest)
        return size

    def _download_directory(self, location: str, dest: str) -> int:
        """Fetch every file under a listable directory URL, keeping the layout."""
        os.makedirs(dest, exist_ok=True)
        base = location if location.endswith('/') else location + '/'
        total = 0
        for component in URLAccess.list_url(base):
            child_dest = os.path.join(dest, unquote(component.rstrip('/')))
            total += self.download(urljoin(base, component), child_dest)
        return total

    def copy_file(self, src: str, dest: str) -> None:
        copy_file(src, dest)

    def copy_dir(self, src: str, dest: str) -> None:
        copy_tree(src, dest)
