# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
Exceptions raised by the docker sandbox engine.
"""


class DockerSandboxError(Exception):
    """Base error for anything that goes wrong inside the sandbox engine.

    Runtime communication failures are wrapped into this type with the
    original exception chained as ``__cause__``.
    """


class ConfigurationError(DockerSandboxError, ValueError):
    """Raised for caller errors detected before any runtime call is made."""


class ProfileNotFoundError(ConfigurationError):
    """Raised when a profile name has no registered profile."""

    def __init__(self, profile_name: str):
        super().__init__(f"The provided profile name {profile_name} has no associated profile")
        self.profile_name = profile_name


class EngineStateError(DockerSandboxError, RuntimeError):
    """Raised when an operation is attempted in the wrong lifecycle state."""


class VolumeInUseError(DockerSandboxError):
    """Raised when a volume cannot be removed because a container still references it."""
