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
from typing import IO, Optional
from urllib.parse import ParseResult

import requests
from requests.exceptions import HTTPError

from flowstage.lib.retry import TRANSIENT_HTTP_STATUSES, ErrorCondition, retry
from flowstage.lib.url import URLAccess

logger = logging.getLogger(__name__)

# Seconds to wait for a server to accept the connection and then to send data.
TIMEOUT = (30, 300)

retry_transient = retry(errors=[
    ErrorCondition(
        error=HTTPError,
        error_codes=TRANSIENT_HTTP_STATUSES
    )
])


class HTTPURLAccess(URLAccess):
    """
    Read-only URL access for http: and https: URLs.

    A web server cannot be listed, so every URL is taken to be a file.
    """

    CHUNK_SIZE = 1024 * 1024

    @classmethod
    def _supports_url(cls, url: ParseResult) -> bool:
        return url.scheme.lower() in ('http', 'https')

    @classmethod
    @retry_transient
    def _url_exists(cls, url: ParseResult) -> bool:
        response = requests.head(url.geturl(), allow_redirects=True, timeout=TIMEOUT)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    @classmethod
    @retry_transient
    def _get_size(cls, url: ParseResult) -> Optional[int]:
        response = requests.head(url.geturl(), allow_redirects=True, timeout=TIMEOUT)
        response.raise_for_status()
        size = response.headers.get('content-length')
        return int(size) if size is not None else None

    @classmethod
    def _get_is_directory(cls, url: ParseResult) -> bool:
        return False

    @classmethod
    def _list_url(cls, url: ParseResult) -> list[str]:
        raise NotImplementedError(f"Cannot list the web resource {url.geturl()}")

    @classmethod
    @retry_transient
    def _read_from_url(cls, url: ParseResult, writable: IO[bytes]) -> tuple[int, bool]:
        # Only the request is retried. A connection lost mid-body fails the read,
        # so nothing is written twice.
        with cls._get(url) as response:
            size = 0
            for chunk in response.iter_content(chunk_size=cls.CHUNK_SIZE):
                writable.write(chunk)
                size += len(chunk)
            return size, False

    @classmethod
    @retry_transient
    def _open_url(cls, url: ParseResult) -> IO[bytes]:
        response = cls._get(url)
        # Undo any content encoding so callers see the real bytes
        response.raw.decode_content = True
        return response.raw

    @staticmethod
    def _get(url: ParseResult) -> requests.Response:
        response = requests.get(url.geturl(), stream=True, timeout=TIMEOUT)
        if response.status_code == 404:
            response.close()
            raise FileNotFoundError(url.geturl())
        try:
            response.raise_for_status()
        except HTTPError:
            response.close()
            raise
        return response
