# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import json
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docker_sandbox.exceptions import ConfigurationError
from docker_sandbox.models import Profile

UNIX_DOCKER_SOCK = "unix:///var/run/docker.sock"


class Shell(str, Enum):
    """The shells commands can be run under."""

    SH = "sh"
    BASH = "bash"

    @property
    def executable(self) -> str:
        return f"/bin/{self.value}"

    @classmethod
    def parse(cls, value: "str | Shell") -> "Shell":
        if isinstance(value, Shell):
            return value
        for shell in cls:
            if shell.value == str(value).strip().lower():
                return shell
        raise ConfigurationError(f"Shell: {value} not recognised")


class SandboxConfig(BaseSettings):
    """
    Configuration for the sandbox engine.
    """

    shell: Shell = Shell.SH
    profiles: list[Profile] = []

    docker_host: str = UNIX_DOCKER_SOCK
    docker_config: str | None = None
    docker_tls_verify: bool = False

    working_directory: str = "/home/sandbox"

    model_config = SettingsConfigDict(
        env_prefix="DOCKER_SANDBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("shell", mode="before")
    @classmethod
    def _parse_shell(cls, value: Any) -> Shell:
        # ConfigurationError is a ValueError, so pydantic reports it as a validation error
        return Shell.parse(value)

    @classmethod
    def from_json(cls, filename: str | Path) -> "SandboxConfig":
        """Load a configuration from a JSON file.

        Args:
            filename: Path to a JSON document with ``shell``, ``profiles`` and
                optional ``docker_host``, ``docker_config`` and ``docker_tls_verify`` keys.

        Returns:
            SandboxConfig: The parsed configuration.

        Raises:
            ConfigurationError: If the file cannot be read, parsed or validated.
        """
        try:
            with open(filename, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to read the JSON file: {filename} provided") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse the JSON file: {filename} provided") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"The JSON file: {filename} must contain an object")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {filename}: {e}") from e
