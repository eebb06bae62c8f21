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
import time
from argparse import ArgumentParser, Namespace
from collections import Counter
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from flowstage.common import Config

logger = logging.getLogger(__name__)
root_logger = logging.getLogger()
flowstage_logger = logging.getLogger('flowstage')

DEFAULT_LOGLEVEL = logging.INFO
LOG_FORMAT = '[%(asctime)s] [%(threadName)-10s] [%(levelname).1s] [%(name)s] %(message)s'
__loggingFiles = []


class StagingStats:
    """
    Tally of the filesystem actions performed by one staging pass.

    Each executor owns one of these and logs it when the pass is over, so that
    a job log shows at a glance how much was linked, copied or fetched.
    """

    ACTIONS = ('symlink', 'copy', 'download', 'write', 'mkdir', 'fifo', 'mount', 'skip')

    def __init__(self) -> None:
        self.counts: Counter = Counter()
        self.start = time.time()

    def record(self, action: str) -> None:
        if action not in self.ACTIONS:
            raise ValueError(f"Unknown staging action: {action}")
        self.counts[action] += 1

    def __getitem__(self, action: str) -> int:
        return self.counts[action]

    def total(self) -> int:
        return sum(count for action, count in self.counts.items() if action != 'skip')

    def report(self) -> str:
        parts = [f"{action}={self.counts[action]}" for action in self.ACTIONS if self.counts[action]]
        return ', '.join(parts) if parts else 'nothing to do'

    def log(self, description: str, level: int = logging.INFO) -> None:
        logger.log(level, "Staged %s in %.3f seconds: %s", description, time.time() - self.start, self.report())


def set_log_level(level: str, set_logger: Optional[logging.Logger] = None) -> None:
    """Set a logger, the root one by default, to a level name such as "INFO" or "off"."""
    level = level.upper()
    (set_logger or root_logger).setLevel("CRITICAL" if level == "OFF" else level)
    suppress_exotic_logging(__name__)


def add_logging_options(parser: ArgumentParser, default_level: Optional[int] = None) -> None:
    """Add the options that control where staging logs go and how much they say."""
    group = parser.add_argument_group("Logging Options")
    default_loglevel = logging.getLevelName(default_level or DEFAULT_LOGLEVEL)

    names = ['Critical', 'Error', 'Warning', 'Info', 'Debug']
    for name in names:
        group.add_argument(f"--log{name}", dest="logLevel", default=default_loglevel, action="store_const",
                           const=name, help=f"Log at level {name}. Default: {default_loglevel}.")
    group.add_argument("--logOff", dest="logLevel", default=default_loglevel, action="store_const",
                       const="CRITICAL", help="Only log critical messages.")
    choices = names + [n.lower() for n in names] + [n.upper() for n in names]
    group.add_argument("--logLevel", dest="logLevel", default=default_loglevel, choices=choices,
                       help=f"Log at this level. Default: {default_loglevel}.")
    group.add_argument("--logFile", dest="logFile", help="Also log to this file.")
    group.add_argument("--rotatingLogging", dest="logRotating", action="store_true", default=False,
                       help="Rotate the log file once it reaches a megabyte.")


def configure_root_logger() -> None:
    """Give the root logger the flowstage format. Entry points call this before logging."""
    logging.basicConfig(format=LOG_FORMAT, datefmt='%Y-%m-%dT%H:%M:%S%z')
    root_logger.setLevel(DEFAULT_LOGLEVEL)


def log_to_file(log_file: Optional[str], log_rotation: bool) -> None:
    if not log_file or log_file in __loggingFiles:
        return
    logger.debug("Logging to file '%s'.", log_file)
    __loggingFiles.append(log_file)
    handler: logging.Handler
    if log_rotation:
        handler = RotatingFileHandler(log_file, maxBytes=1000000, backupCount=1)
    else:
        handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def set_logging_from_options(options: Union["Config", Namespace]) -> None:
    configure_root_logger()
    options.logLevel = options.logLevel or logging.getLevelName(root_logger.getEffectiveLevel())
    set_log_level(options.logLevel)
    logger.debug("Logging at level %s", logging.getLevelName(flowstage_logger.getEffectiveLevel()))
    log_to_file(options.logFile, options.logRotating)


def suppress_exotic_logging(local_logger: str) -> None:
    """
    Quiet every package logger but flowstage's own, by setting them to CRITICAL.

    The HTTP and Docker client libraries are quieted even if they have not
    made a logger yet.
    """
    keep = {'flowstage', '__init__', '__main__', local_logger.split('.')[0]}
    names = set(logging.Logger.manager.loggerDict) | {'urllib3', 'docker', 'requests'}
    packages = {name.split('.')[0] for name in names} - keep
    for package in packages:
        logging.getLogger(package).setLevel(logging.CRITICAL)
    logger.debug("Suppressing the loggers of %s", sorted(packages))
