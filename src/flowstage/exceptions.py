"""Neutral place for exceptions, to break import cycles."""
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
from typing import Optional


class StagingException(Exception):
    """
    Base class for everything that can go wrong while staging a task's inputs.

    None of these are retried by the staging engine. All of them abort the
    rest of the staging plan, and the caller is expected to throw away the
    partially-staged working directory.
    """

    def __init__(self, message: str, location: Optional[str] = None, target: Optional[str] = None) -> None:
        super().__init__(message)
        self.location = location
        self.target = target


class InvalidLocation(StagingException):
    """
    A source reference is neither a recognized URI nor an absolute path.

    Raised while validating a plan, before any filesystem side effect.
    """

    def __init__(self, location: str, reason: Optional[str] = None) -> None:
        message = f"Invalid location '{location}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, location=location)


class SourceUnavailable(StagingException):
    """A file or directory to stage could not be found or fetched."""

    def __init__(self, location: str, target: Optional[str] = None, reason: Optional[str] = None) -> None:
        message = f"Source '{location}' is not available"
        if target is not None:
            message += f" for staging at '{target}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, location=location, target=target)


class DestinationConflict(StagingException):
    """
    Two different sources were about to land on the same destination.

    The destination registry is supposed to make this impossible, so seeing it
    means there is a bug.
    """

    def __init__(self, target: str, claimed_by: Optional[str], location: Optional[str] = None) -> None:
        if claimed_by is None:
            holder = "already exists"
        else:
            holder = f"is already claimed by '{claimed_by}'"
        super().__init__(
            f"Destination '{target}' {holder} and cannot also receive '{location}'",
            location=location,
            target=target,
        )
        self.claimed_by = claimed_by


class IOFailure(StagingException):
    """A filesystem operation failed while staging."""

    def __init__(self, operation: str, target: Optional[str] = None, location: Optional[str] = None,
                 reason: Optional[str] = None) -> None:
        message = f"Could not {operation}"
        if target is not None:
            message += f" at '{target}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, location=location, target=target)
        self.operation = operation


class InvalidOutput(StagingException):
    """A task's outputs could not be collected as declared."""

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        super().__init__(message, location=location)
