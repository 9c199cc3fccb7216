# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Profile and resource limit models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MEGABYTE = 1_000_000

CPU_COUNT_DEFAULT = 4
MEMORY_DEFAULT = 64 * MEGABYTE
TIMEOUT_DEFAULT = 3


class Limits(BaseModel):
    """Resource limits a container created from a profile must adhere to.

    Attributes:
        cpu_count: The number of CPUs the container may use.
        memory: The memory limit in bytes.
        timeout: The wall-clock timeout in seconds for collecting output.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cpu_count: int = Field(default=CPU_COUNT_DEFAULT, alias="cpuCount", gt=0)
    memory: int = Field(default=MEMORY_DEFAULT, gt=0)
    timeout: int = Field(default=TIMEOUT_DEFAULT, gt=0)

    @classmethod
    def from_megabytes(
        cls,
        cpu_count: int = CPU_COUNT_DEFAULT,
        memory: int | None = None,
        timeout: int = TIMEOUT_DEFAULT,
    ) -> "Limits":
        """Build limits from a memory value given in MB."""
        memory_bytes = MEMORY_DEFAULT if memory is None else memory * MEGABYTE
        return cls(cpu_count=cpu_count, memory=memory_bytes, timeout=timeout)


class Profile(BaseModel):
    """A named container configuration.

    One image can back several profiles. ``profile_name`` is the key the engine
    looks profiles up by; equality and hashing cover every field.

    Attributes:
        profile_name: The lookup name of the profile.
        image_name: The image containers are created from.
        container_name: The name given to containers created under this profile.
        user: The user to run as inside the container.
        limits: Resource limits for the container.
        network_disabled: Whether the container's network is disabled.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    profile_name: str = Field(alias="name")
    image_name: str = Field(default="NO-IMAGE-SPECIFIED", alias="image")
    container_name: str = Field(default="", alias="container-name")
    user: str = "root"
    limits: Limits = Field(default_factory=Limits)
    network_disabled: bool = Field(default=False, alias="networkDisabled")

    @model_validator(mode="before")
    @classmethod
    def _default_container_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("container_name") or data.get("container-name")):
            image = data.get("image_name") or data.get("image") or "NO-IMAGE-SPECIFIED"
            data = {**data, "container_name": image}
            data.pop("container-name", None)
        return data

    @field_validator("limits", mode="before")
    @classmethod
    def _limits_from_mapping(cls, value: Any) -> Any:
        # Mappings come from configuration files where memory is given in MB
        if isinstance(value, dict):
            return Limits.from_megabytes(
                cpu_count=value.get("cpuCount", value.get("cpu_count", CPU_COUNT_DEFAULT)),
                memory=value.get("memory"),
                timeout=value.get("timeout", TIMEOUT_DEFAULT),
            )
        return value
