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
import queue
from abc import ABC, abstractmethod
from threading import Event
from typing import Iterable, Optional

from flowstage.exceptions import IOFailure
from flowstage.fileManagers import FetchJob
from flowstage.lib.threading import ExceptionalThread

logger = logging.getLogger(__name__)


class AbstractFileManager(ABC):
    """
    Interface the staging engine uses to move bytes around.

    The engine decides what has to end up where; a file manager knows how to
    get it there on a particular kind of worker. Whether a location has to be
    fetched at all is also the file manager's call, because a location that is
    remote for one worker may be local for another.
    """

    @abstractmethod
    def need_download(self, location: str) -> bool:
        """
        Return True if the location is not directly readable on this worker
        and must be fetched before it can be linked or mounted.
        """
        raise NotImplementedError()

    @abstractmethod
    def download(self, location: str, dest: str) -> int:
        """
        Fetch the file or directory at the location into dest.

        :raises flowstage.exceptions.SourceUnavailable: if there is nothing to
            fetch at the location.
        :raises flowstage.exceptions.IOFailure: if the fetch started but could
            not be written out.
        :return: the number of bytes written.
        """
        raise NotImplementedError()

    @abstractmethod
    def copy_file(self, src: str, dest: str) -> None:
        """Copy a local file, keeping its mode."""
        raise NotImplementedError()

    @abstractmethod
    def copy_dir(self, src: str, dest: str) -> None:
        """Copy a local directory tree."""
        raise NotImplementedError()

    def download_all(self, jobs: Iterable[FetchJob], threads: int = 4, cancel: Optional[Event] = None) -> int:
        """
        Run a batch of independent fetches, several at a time.

        Duplicate jobs are only run once. Returns after every started fetch has
        finished, so nothing that depends on the results can run early. If any
        fetch failed, the first failure is re-raised once all threads are done.

        :param threads: the most fetches to have going at once.
        :param cancel: when set, no further fetches are started, and
            IOFailure is raised if any were left undone.
        :return: the total number of bytes fetched.
        """
        pending: queue.Queue[FetchJob] = queue.Queue()
        seen = set()
        for job in jobs:
            if job not in seen:
                seen.add(job)
                pending.put(job)
        if not seen:
            return 0

        cancel = cancel if cancel is not None else Event()
        # Set on the first failure. The caller's event only ever means cancelled.
        stop = Event()
        totals: list[int] = []

        def worker() -> None:
            while not (stop.is_set() or cancel.is_set()):
                try:
                    job = pending.get_nowait()
                except queue.Empty:
                    return
                logger.debug('Fetching %s to %s', job.location, job.dest)
                try:
                    totals.append(self.download(job.location, job.dest))
                except BaseException:
                    # Stop the other threads from starting anything new
                    stop.set()
                    raise

        workers = [ExceptionalThread(target=worker, name=f'fetch-{i}', daemon=True)
                   for i in range(max(1, min(threads, len(seen))))]
        for thread in workers:
            thread.start()

        failure: Optional[BaseException] = None
        for thread in workers:
            try:
                thread.join()
            except BaseException as e:
                if failure is None:
                    failure = e
        if failure is not None:
            raise failure
        if not pending.empty():
            raise IOFailure('fetch all inputs', reason=f'cancelled with {pending.qsize()} fetches not started')
        logger.debug('Fetched %i sources (%i bytes)', len(totals), sum(totals))
        return sum(totals)
