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

from flowstage.version import version as __version__

log = logging.getLogger(__name__)


def flowstagePackageDirPath() -> str:
    """The absolute, symlink-free path of this package's directory, which ends in '/flowstage'."""
    result = os.path.dirname(os.path.realpath(__file__))
    if os.path.basename(result) != "flowstage":
        raise RuntimeError(f"The flowstage package was loaded from {result}, which is not named flowstage.")
    return result


def lookupEnvVar(name: str, envName: str, defaultValue: str) -> str:
    """
    Get a setting from the environment, logging where it came from.

    :param name: what the setting is, for the log.
    :param envName: the environment variable that overrides it.
    :param defaultValue: the value when the variable is unset.
    """
    value = os.environ.get(envName)
    if value is None:
        log.debug("Using default %s of %s as %s is not set.", name, defaultValue, envName)
        return defaultValue
    log.info("Overriding %s of %s with %s from %s.", name, defaultValue, value, envName)
    return value
