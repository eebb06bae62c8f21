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
The retry() decorator used by URL access implementations.

A fetch is retried when it fails with one of the given exception types, or
with an HTTP error whose status is one of the codes in a matching
:class:`ErrorCondition`. For example, to retry a GET only while the server
says it is unavailable::

    @retry(errors=[ErrorCondition(error=requests.exceptions.HTTPError, error_codes=[503])])
    def fetch_input():
        response = requests.get('https://example.com/input.txt')
        response.raise_for_status()
        return response.content

The staging engine never retries a staging operation itself.
"""
import functools
import http.client
import logging
import time
import urllib.error
from typing import Any, Callable, List, Optional, Union

import requests.exceptions
import urllib3.exceptions

SUPPORTED_HTTP_ERRORS = [http.client.HTTPException,
                         urllib.error.HTTPError,
                         urllib3.exceptions.HTTPError,
                         requests.exceptions.HTTPError]

# Statuses that mean "try again later" rather than "this will never work".
TRANSIENT_HTTP_STATUSES = [408, 500, 502, 503, 504]

logger = logging.getLogger(__name__)


class ErrorCondition:
    """
    An error type to retry on, optionally only for some HTTP statuses.

    :param error: the exception class to match.
    :param error_codes: if given, only errors with one of these statuses are
        retried. The error class must then be one that carries a status.
    """

    def __init__(self, error: type = Exception, error_codes: Optional[List[int]] = None) -> None:
        self.error = error
        self.error_codes = error_codes
        if error_codes and error not in SUPPORTED_HTTP_ERRORS:
            raise NotImplementedError(f'Unknown error type used with error_codes: {error}')

    def matches(self, e: BaseException) -> bool:
        if not isinstance(e, self.error):
            return False
        return not self.error_codes or get_error_status(e) in self.error_codes


def retry(intervals: Optional[List[float]] = None,
          errors: Optional[List[Union[ErrorCondition, type]]] = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Retry a function when it fails with a matching error, sleeping between
    attempts.

    :param intervals: seconds to wait before each retry. Defaults to an
        exponential back-off of 1s, 1s, 2s, 4s, 8s, 16s; when they run out the
        last error is raised.
    :param errors: exception classes or :class:`ErrorCondition` objects to
        retry on. Defaults to any Exception.
    """
    intervals = list(intervals) if intervals else [1, 1, 2, 4, 8, 16]
    conditions = [e if isinstance(e, ErrorCondition) else ErrorCondition(error=e)
                  for e in (errors or [Exception])]
    catchable = tuple({c.error for c in conditions})

    def decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def call(*args: Any, **kwargs: Any) -> Any:
            remaining = list(intervals)
            while True:
                try:
                    return func(*args, **kwargs)
                except catchable as e:
                    if not remaining or not any(c.matches(e) for c in conditions):
                        raise
                    interval = remaining.pop(0)
                    logger.debug("Error in %s: %s. Retrying after %s s...", func.__name__, e, interval)
                    time.sleep(interval)
        return call
    return decorate


def get_error_status(e: BaseException) -> int:
    """
    Get the HTTP status code from an http.client.HTTPException,
    urllib3.exceptions.HTTPError, requests.exceptions.HTTPError,
    urllib.error.HTTPError, or compatible type.

    Returns 0 from other errors.
    """

    def numify(x: Any) -> int:
        """Make sure a value is an integer"""
        return int(str(x).strip())

    if hasattr(e, 'status'):
        return numify(e.status)
    elif getattr(e, 'response', None) is not None and hasattr(e.response, 'status_code'):
        # A requests.exceptions.HTTPError
        return numify(e.response.status_code)
    elif hasattr(e, 'code'):
        # A urllib.error.HTTPError
        return numify(e.code)
    else:
        return 0
