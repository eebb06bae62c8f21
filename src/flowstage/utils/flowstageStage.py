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
"""Stage the inputs of a task described by a job file, and print what was done."""
import json
import logging
import sys

from flowstage.common import DEFAULT_CONTAINER_WORK_DIR, Config, addOptions, parser_with_common_options
from flowstage.exceptions import StagingException
from flowstage.job import ExecutionMode, StagingRequest, container_command, load_job_description, stage_job
from flowstage.statsAndLogging import set_logging_from_options

logger = logging.getLogger(__name__)


def main() -> None:
    parser = parser_with_common_options(prog="flowstage stage")
    addOptions(parser)
    parser.add_argument("job", help="JSON or YAML file describing the job to stage.")
    parser.add_argument("--printCommand", dest="printCommand", default=False, action="store_true",
                        help="Also print the container command line for a contained job.")

    options = parser.parse_args()
    set_logging_from_options(options)
    config = Config()
    config.setOptions(options)

    try:
        rec = load_job_description(options.job)
    except (OSError, ValueError) as e:
        logger.error("Could not read %s: %s", options.job, e)
        sys.exit(1)

    # Options given on the command line win over the job description
    if config.workDir is not None:
        rec["cwd"] = config.workDir
    if config.executionMode is not None:
        rec["executionMode"] = config.executionMode
    if config.containerWorkDir != DEFAULT_CONTAINER_WORK_DIR or not rec.get("containerOutdir"):
        rec["containerOutdir"] = config.containerWorkDir
    if config.inplaceUpdate:
        rec["inplaceUpdate"] = True
    if config.networkAccess:
        rec["networkAccess"] = True

    try:
        request = StagingRequest.from_dict(rec)
        result = stage_job(request,
                           tmpdir_prefix=config.tmpDirPrefix,
                           fetch_threads=config.fetchThreads)
    except (StagingException, ValueError) as e:
        logger.error("Could not stage %s: %s", options.job, e)
        sys.exit(1)

    output = result.to_dict()
    if options.printCommand and request.execution_mode == ExecutionMode.contained:
        output["command"] = container_command(request, result.mounts,
                                              docker_exec=config.dockerExec, user=config.dockerUser)
    print(json.dumps(output, indent=2))
