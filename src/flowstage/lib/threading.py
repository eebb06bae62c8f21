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
# Imported as flowstage.lib.threading, so it does not shadow the built-in module.
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class ExceptionalThread(threading.Thread):
    """
    A thread that hands an exception from its work back to whoever joins it.

    Fetch workers and stream copiers run on these, so a failed download or a
    broken pipe surfaces in the staging pass that started them. Only the join
    that sees the thread finish raises; a join that times out raises nothing.

    Subclasses put their work in tryRun().

    >>> def fetch():
    ...     raise OSError('source went away')
    >>> t = ExceptionalThread(target=fetch)
    >>> t.start()
    >>> t.join()
    Traceback (most recent call last):
    ...
    OSError: source went away
    >>> t.join()
    """
    failure: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.tryRun()
        except BaseException as e:
            self.failure = e
            raise

    def tryRun(self) -> None:
        super().run()

    def join(self, timeout: Optional[float] = None) -> None:
        super().join(timeout)
        if self.failure is not None and not self.is_alive():
            failure, self.failure = self.failure, None
            raise failure
