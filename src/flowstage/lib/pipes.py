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
from contextlib import ExitStack
from typing import IO, Callable, Optional

from flowstage.lib.io import make_fifo
from flowstage.lib.threading import ExceptionalThread

log = logging.getLogger(__name__)

Opener = Callable[[], IO[bytes]]


class StreamTee:
    """
    Copies everything written into one named pipe out to any number of writers.

    A task whose output is streamable writes into a FIFO instead of a regular
    file. Every downstream consumer of that output gets its own FIFO, which is
    registered here as a writer; running the tee pumps the producer's bytes to
    all of them until the producer closes its end.

    >>> import tempfile
    >>> d = tempfile.mkdtemp()
    >>> tee = StreamTee(os.path.join(d, 'out'))
    >>> copy = os.path.join(d, 'copy')
    >>> tee.add_writer(lambda: open(copy, 'wb'))
    >>> len(tee.writers)
    1
    """

    BUFFER_SIZE = 4096

    def __init__(self, source_path: str, create: bool = False) -> None:
        """
        :param source_path: the FIFO the producing task writes into.
        :param create: make the FIFO now, rather than expecting it to exist.
        """
        self.source_path = source_path
        self.writers: list[Opener] = []
        self._thread: Optional[ExceptionalThread] = None
        if create:
            make_fifo(source_path)

    def add_writer(self, opener: Opener) -> None:
        """
        Register a callable that opens one destination for writing.

        Openers are only called when the tee runs, because opening a FIFO for
        writing blocks until somebody opens it for reading.
        """
        self.writers.append(opener)

    def add_fifo_writer(self, path: str) -> None:
        """Register a named pipe at the given path as a destination."""
        self.add_writer(lambda: open(path, 'wb'))

    def run(self) -> int:
        """
        Copy the source to every writer until end of file.

        :return: the number of bytes copied to each writer.
        """
        total = 0
        with ExitStack() as stack:
            readable = stack.enter_context(open(self.source_path, 'rb'))
            log.debug('Opened stream source %s', self.source_path)
            writables = [stack.enter_context(opener()) for opener in self.writers]
            log.debug('Opened %i writers for %s', len(writables), self.source_path)
            while True:
                buf = readable.read(self.BUFFER_SIZE)
                if not buf:
                    break
                for writable in writables:
                    writable.write(buf)
                total += len(buf)
        log.debug('Finished copying %i bytes from %s', total, self.source_path)
        return total

    def start(self) -> None:
        """Run the tee in a background thread."""
        self._thread = ExceptionalThread(target=self.run, name=f'tee-{os.path.basename(self.source_path)}',
                                         daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for a started tee, re-raising anything that went wrong in it."""
        if self._thread is not None:
            self._thread.join(timeout)


class StreamRegistry:
    """
    The streamable outputs known to one worker, keyed by the path of their FIFO.

    Owned by whoever runs the jobs, and handed to the direct staging executor
    so that streamable inputs can be hooked up to a running producer.
    """

    def __init__(self) -> None:
        self.tees: dict[str, StreamTee] = {}

    def register_output(self, path: str, create: bool = True) -> StreamTee:
        """Turn an output path into a FIFO and remember its tee."""
        if path not in self.tees:
            self.tees[path] = StreamTee(path, create=create)
        return self.tees[path]

    def get(self, path: str) -> Optional[StreamTee]:
        return self.tees.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self.tees

    def __len__(self) -> int:
        return len(self.tees)

    def start_all(self) -> None:
        for tee in self.tees.values():
            tee.start()

    def join_all(self, timeout: Optional[float] = None) -> None:
        for tee in self.tees.values():
            tee.join(timeout)
