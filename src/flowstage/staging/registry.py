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
from collections.abc import Iterator
from typing import Optional

from flowstage.exceptions import DestinationConflict

logger = logging.getLogger(__name__)


class DestinationRegistry:
    """
    Which source has claimed which destination, for one staging pass.

    A destination is only ever claimed by one source. When a second source
    asks for a destination that is already taken, it is given the same path
    with ``_1``, ``_2``, ... appended instead, so that nothing is overwritten
    and the result depends only on the order of the requests.

    >>> registry = DestinationRegistry()
    >>> registry.claim('/a/report.txt', '/work/report.txt')
    (True, '/work/report.txt')
    >>> registry.claim('/b/report.txt', '/work/report.txt')
    (True, '/work/report.txt_1')
    >>> registry.claim('/a/report.txt', '/work/report.txt')
    (False, '/work/report.txt')
    """

    def __init__(self) -> None:
        self._claims: dict[str, str] = {}

    def claim(self, source: str, desired: str) -> tuple[bool, str]:
        """
        Claim a destination for a source.

        :return: whether the source still has to be put at the destination,
            and the destination it should go to. The first value is False
            only when this same source already holds the destination.
        """
        candidate = desired
        suffix = 0
        while True:
            owner = self._claims.get(candidate)
            if owner is None:
                self._claims[candidate] = source
                if suffix:
                    logger.debug("Destination %s is taken, using %s for %s", desired, candidate, source)
                else:
                    logger.debug("Claimed %s for %s", candidate, source)
                return True, candidate
            if owner == source:
                logger.debug("%s already holds %s", source, candidate)
                return False, candidate
            suffix += 1
            candidate = f"{desired}_{suffix}"

    def owner(self, target: str) -> Optional[str]:
        """The source holding a destination, if any."""
        return self._claims.get(target)

    def check(self, source: str, target: str) -> None:
        """
        Make sure nothing but the given source holds the destination.

        :raises DestinationConflict: if another source does.
        """
        owner = self._claims.get(target)
        if owner is not None and owner != source:
            raise DestinationConflict(target, claimed_by=owner, location=source)

    def __contains__(self, target: object) -> bool:
        return target in self._claims

    def __len__(self) -> int:
        return len(self._claims)

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def items(self) -> Iterator[tuple[str, str]]:
        """Destinations and their sources, in the order they were claimed."""
        return iter(self._claims.items())
