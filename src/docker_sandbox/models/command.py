# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Command lines and host bindings passed to containers."""

from pydantic import BaseModel, ConfigDict

from docker_sandbox.exceptions import ConfigurationError


class Command(list[str]):
    """A command line to run inside a container.

    It starts out holding the literal command text as its only item. The engine
    prepends the shell invocation before dispatching it.
    """

    def __init__(self, command: str):
        super().__init__([command])

    @property
    def text(self) -> str:
        """The command text without any shell prologue."""
        return self[-1]


class Binding(BaseModel):
    """A host path bound to a path inside the container."""

    model_config = ConfigDict(frozen=True)

    local: str
    remote: str

    def __str__(self) -> str:
        return f"{self.local}:{self.remote}"

    @classmethod
    def from_string(cls, binding: str) -> "Binding":
        """Parse a ``local-path:remote-path`` string."""
        paths = binding.split(":")
        if len(paths) != 2:
            raise ConfigurationError(f"{binding} not formatted correctly as local-path:remote-path")
        return cls(local=paths[0], remote=paths[1])


class Bindings(list[Binding]):
    """An ordered collection of bindings."""

    def add_binding(self, binding: Binding | str) -> "Bindings":
        """Add a binding, parsing it first if given in string form. Returns self for chaining."""
        if isinstance(binding, str):
            binding = Binding.from_string(binding)
        self.append(binding)
        return self
