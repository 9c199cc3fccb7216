# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Any
from unittest.mock import MagicMock

import pytest
from conftest import CONTAINER_ID
from docker.errors import APIError, DockerException

from docker_sandbox.engine import DockerEngine, is_cat_command, stdin_payload
from docker_sandbox.exceptions import (
    DockerSandboxError,
    EngineStateError,
    ProfileNotFoundError,
)
from docker_sandbox.models import Bindings, Command, Profile
from docker_sandbox.working_directory import WorkingDirectory


def api_error(status_code: int) -> APIError:
    return APIError("error", response=MagicMock(status_code=status_code))


def test_add_profiles_replaces_by_name(engine: DockerEngine) -> None:
    replacement = Profile(profile_name="gcc", image_name="gcc:13")

    engine.add_profiles(replacement)

    assert engine.profiles["gcc"] == replacement
    assert len(engine.get_profiles()) == 2


def test_create_container_unknown_profile(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    command = Command("ls")

    with pytest.raises(ProfileNotFoundError, match="missing"):
        engine.create_container("missing", command, Bindings(), working_directory)

    mock_client.api.create_container.assert_not_called()
    assert command == ["ls"]
    assert engine.created_containers == set()


def test_create_container_requires_open_working_directory(engine: DockerEngine, mock_client: Any) -> None:
    unopened = WorkingDirectory(engine, "/home/sandbox")

    with pytest.raises(EngineStateError):
        engine.create_container("gcc", Command("ls"), None, unopened)

    mock_client.api.create_container.assert_not_called()


def test_create_container_configuration(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    command = Command("gcc main.c -o main")
    bindings = Bindings().add_binding("/srv/headers:/usr/local/include/extra")

    container_id = engine.create_container("gcc", command, bindings, working_directory, envs=["DEBUG=1"])

    assert container_id == CONTAINER_ID
    assert command == ["/bin/bash", "-c", "gcc main.c -o main"]

    args, kwargs = mock_client.api.create_container.call_args
    assert args[0] == "gcc-docker"
    assert kwargs["command"] == ["/bin/bash", "-c", "gcc main.c -o main"]
    assert kwargs["stdin_open"] is False
    assert kwargs["tty"] is False
    assert kwargs["user"] == "sandbox"
    assert kwargs["name"] == "gcc-run"
    assert kwargs["environment"] == ["DEBUG=1"]
    assert kwargs["working_dir"] == "/home/sandbox"
    assert kwargs["network_disabled"] is False

    host_config = kwargs["host_config"]
    assert host_config["binds"] == ["/srv/headers:/usr/local/include/extra"]
    assert host_config["nano_cpus"] == 4_000_000_000
    assert host_config["mem_limit"] == 64_000_000
    mount = host_config["mounts"][0]
    assert mount["Target"] == "/home/sandbox"
    assert mount["Source"] == working_directory.name
    assert mount["Type"] == "volume"

    mock_client.api.attach_socket.assert_not_called()
    assert engine.created_containers == {CONTAINER_ID}
    assert engine.used_profiles[CONTAINER_ID].profile_name == "gcc"


def test_create_container_network_disabled(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    engine.create_container("fast", Command("sleep 2"), None, working_directory)

    _, kwargs = mock_client.api.create_container.call_args
    assert kwargs["network_disabled"] is True
    assert kwargs["host_config"]["binds"] == []


def test_create_container_runtime_failure(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    mock_client.api.create_container.side_effect = DockerException("daemon unavailable")

    with pytest.raises(DockerSandboxError) as excinfo:
        engine.create_container("gcc", Command("ls"), None, working_directory)

    assert isinstance(excinfo.value.__cause__, DockerException)
    assert engine.created_containers == set()


@pytest.mark.parametrize("stdin", [None, ""])
def test_create_container_without_stdin_does_not_attach(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory, stdin: str | None
) -> None:
    engine.create_container("gcc", Command("cat"), None, working_directory, stdin=stdin)

    mock_client.api.attach_socket.assert_not_called()
    assert mock_client.api.create_container.call_args.kwargs["stdin_open"] is False


def test_create_container_with_stdin_for_cat(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    sock = MagicMock()
    mock_client.api.attach_socket.return_value = sock

    engine.create_container("gcc", Command("cat"), None, working_directory, stdin="hello")

    assert mock_client.api.create_container.call_args.kwargs["stdin_open"] is True
    args, kwargs = mock_client.api.attach_socket.call_args
    assert args[0] == CONTAINER_ID
    assert kwargs["params"] == {"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1, "logs": 1}
    sock._sock.sendall.assert_called_once_with(b"hello\n\x04")


def test_create_container_with_stdin_for_other_command(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    sock = MagicMock()
    mock_client.api.attach_socket.return_value = sock

    engine.create_container("gcc", Command("./main"), None, working_directory, stdin="3 4")

    sock._sock.sendall.assert_called_once_with(b"3 4\n")
    mock_client.api.start.assert_not_called()


def test_create_container_stdin_write_failure(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    sock = MagicMock()
    sock._sock.sendall.side_effect = BrokenPipeError("closed")
    mock_client.api.attach_socket.return_value = sock

    with pytest.raises(DockerSandboxError, match="Failed to write stdin"):
        engine.create_container("gcc", Command("./main"), None, working_directory, stdin="3 4")


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("cat", True),
        ("  cat  ", True),
        ("cat -n", True),
        ("cat --show-ends", True),
        ("cat input.txt", False),
        ("catalog -x", False),
        ("python3 main.py", False),
        ("", False),
    ],
)
def test_is_cat_command(command: str, expected: bool) -> None:
    assert is_cat_command(command) is expected


def test_stdin_payload_encodes_utf8() -> None:
    assert stdin_payload("cat", "héllo") == "héllo\n\x04".encode("utf-8")


def test_start_container(engine: DockerEngine, mock_client: Any) -> None:
    engine.start_container(CONTAINER_ID)
    mock_client.api.start.assert_called_once_with(CONTAINER_ID)


def test_start_container_twice_is_noop(engine: DockerEngine, mock_client: Any) -> None:
    mock_client.api.start.side_effect = [None, api_error(304)]

    engine.start_container(CONTAINER_ID)
    engine.start_container(CONTAINER_ID)

    assert mock_client.api.start.call_count == 2


def test_start_container_failure(engine: DockerEngine, mock_client: Any) -> None:
    mock_client.api.start.side_effect = api_error(500)

    with pytest.raises(DockerSandboxError):
        engine.start_container(CONTAINER_ID)


def test_stop_container_already_stopped(engine: DockerEngine, mock_client: Any) -> None:
    mock_client.api.stop.side_effect = api_error(304)

    engine.stop_container(CONTAINER_ID)

    mock_client.api.stop.assert_called_once_with(CONTAINER_ID)


def test_stop_container_missing(engine: DockerEngine, mock_client: Any) -> None:
    mock_client.api.stop.side_effect = api_error(404)

    with pytest.raises(DockerSandboxError):
        engine.stop_container(CONTAINER_ID)


def test_remove_container_forgets_container(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    container_id = engine.create_container("gcc", Command("ls"), None, working_directory)

    engine.remove_container(container_id)

    mock_client.api.remove_container.assert_called_once_with(container_id, force=True)
    assert engine.created_containers == set()
    assert container_id not in engine.used_profiles


def test_remove_container_closes_unused_attachment(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    sock = MagicMock()
    mock_client.api.attach_socket.return_value = sock
    container_id = engine.create_container("gcc", Command("cat"), None, working_directory, stdin="x")

    engine.remove_container(container_id)

    sock.close.assert_called_once()


def test_cleanup_containers(engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory) -> None:
    mock_client.api.create_container.side_effect = [{"Id": "first"}, {"Id": "second"}]
    engine.create_container("gcc", Command("ls"), None, working_directory)
    engine.create_container("gcc", Command("ls"), None, working_directory)
    mock_client.api.containers.return_value = [{"Id": "second"}]

    engine.cleanup_containers()

    _, kwargs = mock_client.api.containers.call_args
    assert kwargs["all"] is True
    assert kwargs["filters"] == {"id": ["first", "second"]}
    mock_client.api.remove_container.assert_called_once_with("second", force=True)
    assert engine.created_containers == set()
    assert engine.used_profiles == {}


def test_cleanup_containers_nothing_created(engine: DockerEngine, mock_client: Any) -> None:
    engine.cleanup_containers()

    mock_client.api.containers.assert_not_called()


def test_cleanup_containers_list_failure(
    engine: DockerEngine, mock_client: Any, working_directory: WorkingDirectory
) -> None:
    engine.create_container("gcc", Command("ls"), None, working_directory)
    mock_client.api.containers.side_effect = DockerException("boom")

    with pytest.raises(DockerSandboxError):
        engine.cleanup_containers()


def test_remove_volume_conflict(engine: DockerEngine, mock_client: Any) -> None:
    from docker_sandbox.exceptions import VolumeInUseError

    mock_client.api.remove_volume.side_effect = api_error(409)

    with pytest.raises(VolumeInUseError):
        engine.remove_volume("sandbox-x")


def test_remove_volume_other_failure(engine: DockerEngine, mock_client: Any) -> None:
    from docker_sandbox.exceptions import VolumeInUseError

    mock_client.api.remove_volume.side_effect = api_error(500)

    with pytest.raises(DockerSandboxError) as excinfo:
        engine.remove_volume("sandbox-x")

    assert not isinstance(excinfo.value, VolumeInUseError)


def test_copy_tar_to_container_failure(engine: DockerEngine, mock_client: Any) -> None:
    mock_client.api.put_archive.side_effect = DockerException("no such container")

    with pytest.raises(DockerSandboxError):
        engine.copy_tar_to_container(CONTAINER_ID, "/home/sandbox", MagicMock())


def test_open_creates_volume(engine: DockerEngine, mock_client: Any) -> None:
    working_directory = engine.open("/workspace")

    assert working_directory.path == "/workspace"
    assert working_directory.is_open
    mock_client.api.create_volume.assert_called_once_with(working_directory.name)


def test_close_closes_client(engine: DockerEngine, mock_client: Any) -> None:
    engine.close()
    mock_client.close.assert_called_once()
