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
docker-sandbox
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import SandboxConfig, Shell
from .engine import DockerEngine
from .exceptions import (
    ConfigurationError,
    DockerSandboxError,
    EngineStateError,
    ProfileNotFoundError,
    VolumeInUseError,
)
from .factory import EngineFactory, get_engine
from .models import Binding, Bindings, Command, Limits, Profile, Result, UploadedFile
from .sandbox import Sandbox, SandboxAsync
from .working_directory import WorkingDirectory

__all__ = [
    "Binding",
    "Bindings",
    "Command",
    "ConfigurationError",
    "DockerEngine",
    "DockerSandboxError",
    "EngineFactory",
    "EngineStateError",
    "Limits",
    "Profile",
    "ProfileNotFoundError",
    "Result",
    "Sandbox",
    "SandboxAsync",
    "SandboxConfig",
    "Shell",
    "UploadedFile",
    "VolumeInUseError",
    "WorkingDirectory",
    "get_engine",
]
