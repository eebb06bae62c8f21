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
from urllib.parse import ParseResult


class UnimplementedURLException(RuntimeError):
    def __init__(self, url: ParseResult, operation: str) -> None:
        """
        No URL access plugin handles the URL, or its plugin could not be
        imported.

        :param url: the URL that was to be read.
        :param operation: what was being done with it, for the message.
        """
        super().__init__(
            f"No available URL access implementation can {operation} the URL "
            f"{url.geturl()!r}. Does the scheme '{url.scheme}' need an extra "
            "plugin to be installed?"
        )
