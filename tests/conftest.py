# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import threading
from collections.abc import Iterable
from typing import Any
from unittest.mock import MagicMock

import pytest

from docker_sandbox.config import Shell
from docker_sandbox.engine import DockerEngine
from docker_sandbox.models import Limits, Profile
from docker_sandbox.working_directory import WorkingDirectory

CONTAINER_ID = "4f1d2c3b5a6e7f8091a2b3c4d5e6f708192a3b4c5d6e7f8091a2b3c4d5e6f7a8"


class FakeStream:
    """Stands in for docker-py's CancellableStream in log-follow tests."""

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        block: threading.Event | None = None,
        error: Exception | None = None,
    ):
        self._chunks = list(chunks)
        self._block = block
        self._error = error
        self.closed = False

    def __iter__(self) -> "FakeStream":
        return self

    def __next__(self) -> bytes:
        if self._block is not None:
            self._block.wait(5)
        if self._error is not None and not self.closed:
            raise self._error
        if self.closed or not self._chunks:
            raise StopIteration
        return self._chunks.pop(0)

    def close(self) -> None:
        self.closed = True
        if self._block is not None:
            self._block.set()


def finished_state(**overrides: Any) -> dict[str, Any]:
    state = {
        "ExitCode": 0,
        "OOMKilled": False,
        "StartedAt": "2021-03-01T10:00:00.000000000Z",
        "FinishedAt": "2021-03-01T10:00:02.500000000Z",
    }
    state.update(overrides)
    return {"State": state}


@pytest.fixture
def mock_client() -> Any:
    client = MagicMock()
    client.api.create_host_config.side_effect = lambda **kwargs: kwargs
    client.api.create_container.return_value = {"Id": CONTAINER_ID}
    client.api.create_volume.side_effect = lambda name: {"Name": name, "Driver": "local"}
    client.api.inspect_container.return_value = finished_state()
    client.api.containers.return_value = []
    return client


@pytest.fixture
def profile() -> Profile:
    return Profile(
        profile_name="gcc",
        image_name="gcc-docker",
        container_name="gcc-run",
        user="sandbox",
    )


@pytest.fixture
def engine(mock_client: Any, profile: Profile) -> DockerEngine:
    fast = Profile(
        profile_name="fast",
        image_name="alpine",
        container_name="fast-run",
        user="root",
        limits=Limits(timeout=1),
        network_disabled=True,
    )
    return DockerEngine(mock_client, shell=Shell.BASH, profiles=[profile, fast])


@pytest.fixture
def working_directory(engine: DockerEngine) -> WorkingDirectory:
    return engine.open("/home/sandbox")
