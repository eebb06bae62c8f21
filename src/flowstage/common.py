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
import tempfile
from argparse import (Action,
                      ArgumentDefaultsHelpFormatter,
                      ArgumentParser,
                      ArgumentTypeError,
                      Namespace,
                      _ArgumentGroup)
from typing import Any, Optional, Union

from configargparse import ArgParser, YAMLConfigFileParser

from flowstage.lib.checksum import SUPPORTED_ALGORITHMS
from flowstage.statsAndLogging import add_logging_options
from flowstage.version import version

logger = logging.getLogger(__name__)

FLOWSTAGE_HOME_DIR: str = os.path.join(os.path.expanduser("~"), ".flowstage")
DEFAULT_CONFIG_FILE: str = os.path.join(FLOWSTAGE_HOME_DIR, "default.yaml")
ENV_VAR_PREFIX = "FLOWSTAGE_"

# Where the container sees its work directory unless told otherwise.
DEFAULT_CONTAINER_WORK_DIR = "/var/spool/cwl"


class Config:
    """Class to represent configuration operations for a staging run."""
    logLevel: Optional[str]
    logFile: Optional[str]
    logRotating: bool
    workDir: Optional[str]
    containerWorkDir: str
    executionMode: str
    inplaceUpdate: bool
    tmpDirPrefix: Optional[str]
    fetchThreads: int
    checksumAlgorithm: str
    computeChecksum: bool
    dockerExec: Optional[str]
    dockerUser: Optional[str]
    networkAccess: bool

    def __init__(self) -> None:
        self.set_from_default_config()

    def set_from_default_config(self) -> None:
        # get defaults by simulating an argparse run, so that defaults only
        # live in one place
        parser = ArgParser()
        addOptions(parser)
        ns = parser.parse_args("")
        self.setOptions(ns)

    def setOptions(self, options: Namespace) -> None:
        """Creates a config object from the options object."""

        def set_option(option_name: str) -> None:
            """
            If the option gets a non-None value, sets it as an attribute in
            this Config. Otherwise the current value is kept.
            """
            option_value = getattr(options, option_name, None)
            if option_value is not None or not hasattr(self, option_name):
                setattr(self, option_name, option_value)

        # Logging
        set_option("logLevel")
        set_option("logFile")
        set_option("logRotating")

        # Staging
        set_option("workDir")
        set_option("containerWorkDir")
        set_option("executionMode")
        set_option("inplaceUpdate")
        set_option("tmpDirPrefix")
        set_option("fetchThreads")
        set_option("checksumAlgorithm")
        set_option("computeChecksum")

        # Container
        set_option("dockerExec")
        set_option("dockerUser")
        set_option("networkAccess")


_BOOLEANS = {'true': True, 't': True, 'yes': True, 'y': True, 'on': True, '1': True,
             'false': False, 'f': False, 'no': False, 'n': False, 'off': False, '0': False}


def parseBool(val: str) -> bool:
    try:
        return _BOOLEANS[val.strip().lower()]
    except KeyError:
        raise ArgumentTypeError(f'"{val}" is not a boolean value')


def at_least(minimum: int) -> type[Action]:
    """An argparse action that rejects integers below the minimum."""

    class AtLeastAction(Action):
        def __call__(self, parser: Any, namespace: Any, values: Any, option_string: Any = None) -> None:
            if values < minimum:
                parser.error(f"{option_string} must be at least {minimum}, not {values}")
            setattr(namespace, self.dest, values)

    return AtLeastAction


class AbsPathAction(Action):
    """Makes a path option absolute, so it survives a change of directory."""

    def __call__(self, parser: Any, namespace: Any, values: Any, option_string: Any = None) -> None:
        setattr(namespace, self.dest, os.path.abspath(values) if values is not None else None)


def add_staging_options(parser: Union[ArgumentParser, _ArgumentGroup]) -> None:
    staging_options = parser.add_argument_group(
        title="Staging options",
        description="Where inputs are staged, and how."
    )
    staging_options.add_argument("--workDir", dest="workDir", default=None, action=AbsPathAction,
                                 help="The host directory the task runs in. Inputs that belong in the work "
                                      "directory are staged here. Overrides the job description.")
    staging_options.add_argument("--containerWorkDir", dest="containerWorkDir", default=DEFAULT_CONTAINER_WORK_DIR,
                                 help="Where a contained task sees the work directory.")
    staging_options.add_argument("--executionMode", dest="executionMode", default=None,
                                 choices=["direct", "contained"],
                                 help="Stage for a task that runs directly on the host, or for one that runs "
                                      "in a container. Overrides the job description.")
    staging_options.add_argument("--inplaceUpdate", dest="inplaceUpdate", default=False, action="store_true",
                                 help="Let tasks change their writable inputs where they are, instead of "
                                      "on a private copy.")
    staging_options.add_argument("--tmpDirPrefix", dest="tmpDirPrefix", default=None, action=AbsPathAction,
                                 help=f"Directory to make per-task scratch directories in. "
                                      f"Defaults to {tempfile.gettempdir()}.")
    staging_options.add_argument("--fetchThreads", dest="fetchThreads", default=4, type=int,
                                 action=at_least(1),
                                 help="The most remote inputs to fetch at once.")
    staging_options.add_argument("--checksumAlgorithm", dest="checksumAlgorithm", default="sha1",
                                 choices=SUPPORTED_ALGORITHMS,
                                 help="Algorithm for the checksums of listed and collected files.")
    staging_options.add_argument("--noChecksum", dest="computeChecksum", default=True, action="store_false",
                                 help="Do not checksum files when listing directories.")


def add_container_options(parser: Union[ArgumentParser, _ArgumentGroup]) -> None:
    container_options = parser.add_argument_group(
        title="Container options",
        description="How the container command line is put together. Nothing is run."
    )
    container_options.add_argument("--dockerExec", dest="dockerExec", default=None,
                                   help="The container engine executable to name in the command line. "
                                        "Defaults to $FLOWSTAGE_DOCKER_EXEC, or docker.")
    container_options.add_argument("--dockerUser", dest="dockerUser", default=None,
                                   help="The user the container runs as, in UID:GID form. "
                                        "Defaults to $FLOWSTAGE_DOCKER_USER, or 1001:1001.")
    container_options.add_argument("--networkAccess", dest="networkAccess", default=False, type=parseBool,
                                   metavar="BOOL",
                                   help="Whether the container may use the network.")


def addOptions(parser: ArgumentParser) -> None:
    """
    Add all flowstage command line options to a parser.

    Support for config files and environment variables if using configargparse.
    """
    if not (isinstance(parser, ArgumentParser) or isinstance(parser, _ArgumentGroup)):
        raise ValueError(
            f"Unanticipated class: {parser.__class__}.  Must be: argparse.ArgumentParser or ArgumentGroup.")

    if isinstance(parser, ArgParser):
        # this forces configargparse to process the config file in YAML rather than in its own format
        parser._config_file_parser = YAMLConfigFileParser()  # type: ignore[misc]
        parser._default_config_files = [DEFAULT_CONFIG_FILE]  # type: ignore[misc]

    add_staging_options(parser)
    add_container_options(parser)


def parser_with_common_options(prog: Optional[str] = None,
                               default_log_level: Optional[int] = None) -> ArgParser:
    parser = ArgParser(prog=prog or "flowstage",
                       formatter_class=ArgumentDefaultsHelpFormatter,
                       config_file_parser_class=YAMLConfigFileParser,
                       default_config_files=[DEFAULT_CONFIG_FILE],
                       auto_env_var_prefix=ENV_VAR_PREFIX)
    parser.add_argument("--config", dest="config", is_config_file_arg=True, default=None,
                        help="Get options from a YAML config file.")

    # always add these
    add_logging_options(parser, default_log_level)
    parser.add_argument("--version", action='version', version=version)
    return parser
