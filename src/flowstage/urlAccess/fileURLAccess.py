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
import shutil
import stat
from typing import IO, Optional
from urllib.parse import ParseResult, quote, unquote

from flowstage.lib.url import URLAccess

logger = logging.getLogger(__name__)


class FileURLAccess(URLAccess):
    """
    Reads ``file:`` URLs naming paths on this machine.

    Only an empty host or ``localhost`` is accepted; a file URL for another
    machine cannot be read from here.
    """

    # Copy in 10 MiB pieces
    BUFFER_SIZE = 10 * 1024 * 1024

    @staticmethod
    def local_path(url: ParseResult) -> str:
        if url.netloc not in ('', 'localhost'):
            raise RuntimeError(f"The file URL '{url.geturl()}' names another host")
        return unquote(url.path)

    @classmethod
    def _supports_url(cls, url: ParseResult) -> bool:
        return url.scheme.lower() == 'file'

    @classmethod
    def _url_exists(cls, url: ParseResult) -> bool:
        return os.path.exists(cls.local_path(url))

    @classmethod
    def _get_size(cls, url: ParseResult) -> Optional[int]:
        return os.path.getsize(cls.local_path(url))

    @classmethod
    def _get_is_directory(cls, url: ParseResult) -> bool:
        return os.path.isdir(cls.local_path(url))

    @classmethod
    def _list_url(cls, url: ParseResult) -> list[str]:
        with os.scandir(cls.local_path(url)) as it:
            return sorted(quote(e.name) + ('/' if e.is_dir() else '') for e in it)

    @classmethod
    def _read_from_url(cls, url: ParseResult, writable: IO[bytes]) -> tuple[int, bool]:
        path = cls.local_path(url)
        with open(path, 'rb') as readable:
            shutil.copyfileobj(readable, writable, length=cls.BUFFER_SIZE)
            size = readable.tell()
        return size, bool(os.stat(path).st_mode & stat.S_IXUSR)

    @classmethod
    def _open_url(cls, url: ParseResult) -> IO[bytes]:
        return open(cls.local_path(url), 'rb')
