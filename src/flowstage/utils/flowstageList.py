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
"""Print the listing of a directory, as File and Directory records."""
import json
import logging
import os
import sys

from schema_salad.ref_resolver import file_uri

from flowstage.common import Config, addOptions, parser_with_common_options
from flowstage.cwl.listing import ListingExpander, LoadListing
from flowstage.cwl.objects import Directory
from flowstage.exceptions import StagingException
from flowstage.statsAndLogging import set_logging_from_options

logger = logging.getLogger(__name__)


def main() -> None:
    parser = parser_with_common_options(prog="flowstage list")
    addOptions(parser)
    parser.add_argument("directory", help="The directory to list.")
    parser.add_argument("--loadListing", dest="loadListing", default=LoadListing.deep_listing.value,
                        choices=[mode.value for mode in LoadListing],
                        help="How deep to list.")

    options = parser.parse_args()
    set_logging_from_options(options)
    config = Config()
    config.setOptions(options)

    path = os.path.abspath(options.directory)
    if not os.path.isdir(path):
        logger.error("%s is not a directory", path)
        sys.exit(1)

    directory = Directory(location=file_uri(path))
    expander = ListingExpander(LoadListing(options.loadListing),
                               compute_checksum=config.computeChecksum,
                               checksum_algorithm=config.checksumAlgorithm)
    try:
        expander.expand(directory)
    except StagingException as e:
        logger.error("Could not list %s: %s", path, e)
        sys.exit(1)
    print(json.dumps(directory.to_dict(), indent=2))
