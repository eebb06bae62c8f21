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
import hashlib
import logging
from io import BytesIO
from typing import TYPE_CHECKING, BinaryIO, Union

if TYPE_CHECKING:
    # mypy complaint: https://github.com/python/typeshed/issues/2928
    from hashlib import _Hash


logger = logging.getLogger(__name__)

# Read files in 1 MiB pieces.
CHUNK_SIZE = 1024 * 1024

SUPPORTED_ALGORITHMS = ("sha1", "sha256")


def new_hasher(algorithm: str) -> "_Hash":
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm '{algorithm}', use one of {SUPPORTED_ALGORITHMS}")
    return hashlib.new(algorithm)


def compute_checksum_for_file(local_file_path: str, algorithm: str = "sha1") -> str:
    with open(local_file_path, "rb") as fh:
        checksum_result = compute_checksum_for_content(fh, algorithm=algorithm)
    return checksum_result


def compute_checksum_for_content(fh: Union[BinaryIO, BytesIO], algorithm: str = "sha1") -> str:
    """
    Hash everything left in the given stream.

    :return: the checksum in CWL form, the algorithm name and the hex digest
        separated by '$', like ``sha1$2aae6c35c94fcfb415dbe95f408b9ce91ee846ed``.
    """
    hasher = new_hasher(algorithm)
    contents = fh.read(CHUNK_SIZE)
    while contents != b"":
        hasher.update(contents)
        contents = fh.read(CHUNK_SIZE)

    return f"{algorithm}${hasher.hexdigest()}"

