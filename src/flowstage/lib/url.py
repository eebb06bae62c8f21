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
from abc import abstractmethod
from typing import IO, Optional, cast
from urllib.parse import ParseResult, urlparse

from flowstage.lib.exceptions import UnimplementedURLException
from flowstage.lib.plugins import get_plugin, register_plugin

logger = logging.getLogger(__name__)


class URLAccess:
    """
    Reads inputs that live behind a URL.

    The public class methods take a URL string and hand it to the subclass
    registered for its scheme as a ``url_access`` plugin. Subclasses fill in
    the underscored methods for their own scheme.
    """

    @classmethod
    def url_exists(cls, src_uri: str) -> bool:
        """
        Whether something is at the URL. Raises if that cannot be found out.
        """
        impl, url = cls._dispatch(src_uri)
        return impl._url_exists(url)

    @classmethod
    def get_size(cls, src_uri: str) -> Optional[int]:
        """Size in bytes of the file at the URL, or None if it cannot be had."""
        impl, url = cls._dispatch(src_uri)
        return impl._get_size(url)

    @classmethod
    def get_is_directory(cls, src_uri: str) -> bool:
        """
        Whether the URL names a directory rather than a file. A trailing '/'
        is not required.
        """
        impl, url = cls._dispatch(src_uri)
        return impl._get_is_directory(url)

    @classmethod
    def list_url(cls, src_uri: str) -> list[str]:
        """
        The URL-encoded names in the directory at the URL. Directory names end
        in '/'; each name can be joined onto the URL with '/'.
        """
        impl, url = cls._dispatch(src_uri)
        return impl._list_url(url)

    @classmethod
    def read_from_url(cls, src_uri: str, writable: IO[bytes]) -> tuple[int, bool]:
        """
        Copy the file at the URL into a writable stream.

        :raises FileNotFoundError: if there is nothing at the URL.
        :return: the number of bytes copied, and whether the file is executable.
        """
        impl, url = cls._dispatch(src_uri)
        return impl._read_from_url(url, writable)

    @classmethod
    def open_url(cls, src_uri: str) -> IO[bytes]:
        """
        A readable stream of the file at the URL.

        :raises FileNotFoundError: if there is nothing at the URL.
        """
        impl, url = cls._dispatch(src_uri)
        return impl._open_url(url)

    @classmethod
    @abstractmethod
    def _url_exists(cls, url: ParseResult) -> bool:
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    @abstractmethod
    def _get_size(cls, url: ParseResult) -> Optional[int]:
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    @abstractmethod
    def _get_is_directory(cls, url: ParseResult) -> bool:
        """False for files, and for things known not to exist."""
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    @abstractmethod
    def _read_from_url(cls, url: ParseResult, writable: IO[bytes]) -> tuple[int, bool]:
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    @abstractmethod
    def _list_url(cls, url: ParseResult) -> list[str]:
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    @abstractmethod
    def _open_url(cls, url: ParseResult) -> IO[bytes]:
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    @abstractmethod
    def _supports_url(cls, url: ParseResult) -> bool:
        """Whether this implementation can read the URL."""
        raise NotImplementedError(f"No implementation for {url}")

    @classmethod
    def _dispatch(cls, src_uri: str) -> tuple[type["URLAccess"], ParseResult]:
        url = urlparse(src_uri)
        return cls._find_url_implementation(url), url

    @classmethod
    def _find_url_implementation(cls, url: ParseResult) -> type["URLAccess"]:
        """
        The plugin class for the URL's scheme.

        :raises UnimplementedURLException: if no installed plugin reads it.
        """
        scheme = url.scheme.lower()
        try:
            implementation = cast(type[URLAccess], get_plugin("url_access", scheme)())
        except KeyError:
            raise UnimplementedURLException(url, "import")
        except ImportError:
            # The plugin is registered but its extra is not installed
            logger.debug("Could not load the implementation for scheme '%s'", scheme)
            raise UnimplementedURLException(url, "import")

        if not implementation._supports_url(url):
            raise UnimplementedURLException(url, "import")
        return implementation


def file_url_access_factory() -> type[URLAccess]:
    from flowstage.urlAccess.fileURLAccess import FileURLAccess

    return FileURLAccess


def http_url_access_factory() -> type[URLAccess]:
    from flowstage.urlAccess.httpURLAccess import HTTPURLAccess

    return HTTPURLAccess


register_plugin("url_access", "file", file_url_access_factory)
register_plugin("url_access", "http", http_url_access_factory)
register_plugin("url_access", "https", http_url_access_factory)
