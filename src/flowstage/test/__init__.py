"""Base testing class for flowstage."""
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
import datetime
import logging
import os
import shutil
import tempfile
import unittest
from typing import Any, Callable, Optional, TypeVar, cast
from unittest.util import strclass

import pytz
from pytest import mark as pytest_mark

from flowstage import flowstagePackageDirPath

logger = logging.getLogger(__name__)


class FlowstageTest(unittest.TestCase):
    """
    Base class for flowstage test cases.

    Gives each test scratch directories to stage into. They go in the system
    temporary directory and are removed once the class is done, unless
    FLOWSTAGE_TEST_TEMP names a directory to keep them in instead. A relative
    FLOWSTAGE_TEST_TEMP is taken relative to the project root.
    """

    _tempBaseDir: Optional[str] = None
    _tempDirs: list[str] = []

    def setup_method(self, method: Any) -> None:
        now = pytz.timezone('America/Los_Angeles').localize(datetime.datetime.now())
        print(f"\n\n[TEST] {strclass(self.__class__)}:{self._testMethodName} "
              f"({now.strftime('%b %d %Y %H:%M:%S:%f %Z')})\n\n")

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        keep_in = os.environ.get('FLOWSTAGE_TEST_TEMP')
        if keep_in is not None and not os.path.isabs(keep_in):
            keep_in = os.path.abspath(os.path.join(cls._projectRootPath(), keep_in))
            os.makedirs(keep_in, exist_ok=True)
        cls._tempBaseDir = keep_in

    @classmethod
    def tearDownClass(cls) -> None:
        dirs = list(cls._tempDirs)
        cls._tempDirs.clear()
        if cls._tempBaseDir is None:
            for tempDir in reversed(dirs):
                if os.path.exists(tempDir):
                    # Staged literals are read-only, so make everything writable first
                    for root, subdirs, _ in os.walk(tempDir):
                        for d in subdirs:
                            path = os.path.join(root, d)
                            if not os.path.islink(path):
                                os.chmod(path, 0o755)
                    shutil.rmtree(tempDir)
        super().tearDownClass()

    def setUp(self) -> None:
        logger.info("Setting up %s ...", self.id())
        super().setUp()

    def tearDown(self) -> None:
        super().tearDown()
        logger.info("Tore down %s", self.id())

    @classmethod
    def _projectRootPath(cls) -> str:
        """The checkout the package was loaded from, the parent of src/."""
        package_dir = flowstagePackageDirPath()
        assert package_dir.endswith(os.path.join('src', 'flowstage'))
        return os.path.dirname(os.path.dirname(package_dir))

    def _createTempDir(self, purpose: Optional[str] = None) -> str:
        return self._createTempDirEx(self._testMethodName, purpose)

    @classmethod
    def _createTempDirEx(cls, *names: Optional[str]) -> str:
        """Make a scratch directory named after the test class and the given names."""
        classname = strclass(cls).removeprefix("flowstage.test.")
        prefix = "-".join(["flowstage", "test", classname, *(n for n in names if n), ""])
        path = os.path.realpath(tempfile.mkdtemp(dir=cls._tempBaseDir, prefix=prefix))
        cls._tempDirs.append(path)
        return path

    def _writeFile(self, path: str, contents: str = "") -> str:
        """Write a file, making its parents, and return its path."""
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(contents)
        return path

    def _readFile(self, path: str) -> str:
        with open(path) as f:
            return f.read()


MT = TypeVar("MT", bound=Callable[..., Any])


def _mark_test(name: str, test_item: MT) -> MT:
    return cast(MT, getattr(pytest_mark, name)(test_item))


def needs_fifo(test_item: MT) -> MT:
    """
    Use as a decorator before test classes or methods that make named pipes.
    """
    test_item = _mark_test('fifo', test_item)
    if hasattr(os, 'mkfifo'):
        return test_item
    else:
        return unittest.skip("Named pipes are not available on this platform.")(test_item)
