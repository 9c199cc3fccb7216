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
The container execution engine.
"""

import math
import re
import socket
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Any, BinaryIO

import docker
from docker.errors import APIError, DockerException
from docker.types import Mount
from docker.utils.socket import STDERR, STDOUT, frames_iter

from docker_sandbox.config import Shell
from docker_sandbox.exceptions import (
    DockerSandboxError,
    EngineStateError,
    ProfileNotFoundError,
    VolumeInUseError,
)
from docker_sandbox.models import UNKNOWN_EXIT_CODE, Bindings, Command, Profile, Result
from docker_sandbox.output import EOF_MARKER, Frame, OutputCollector
from docker_sandbox.utils.logger import logger
from docker_sandbox.working_directory import WorkingDirectory

UNSET_TIMESTAMP = "0001-01-01T00:00:00Z"
NANO_CPUS = 1_000_000_000

HTTP_NOT_MODIFIED = 304
HTTP_CONFLICT = 409

_TIMESTAMP = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?(?P<zone>Z|[+-]\d{2}:\d{2})$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as reported by the Docker daemon.

    The daemon reports nanoseconds, so the fraction is truncated to microseconds.
    """
    match = _TIMESTAMP.match(value)
    if match is None:
        raise ValueError(f"Unrecognised timestamp: {value}")
    fraction = (match["fraction"] or "")[:6].ljust(6, "0")
    zone = "+00:00" if match["zone"] == "Z" else match["zone"]
    return datetime.fromisoformat(f"{match['base']}.{fraction}{zone}")


def compute_duration(state: dict[str, Any]) -> float:
    """Seconds between a container's start and finish, NaN if either is unset."""
    started = state.get("StartedAt")
    finished = state.get("FinishedAt")

    if not started or not finished or UNSET_TIMESTAMP in (started, finished):
        return math.nan

    try:
        delta = parse_timestamp(finished) - parse_timestamp(started)
    except ValueError as e:
        logger.warning(f"Could not compute container duration: {e}")
        return math.nan

    return round(delta.total_seconds(), 3)


def is_cat_command(command_text: str) -> bool:
    """Whether the command is ``cat`` alone or ``cat`` followed by a flag.

    Such a command reads stdin until an explicit EOF and never terminates otherwise.
    """
    tokens = command_text.split()
    return bool(tokens) and tokens[0] == "cat" and (len(tokens) == 1 or tokens[1].startswith("-"))


def stdin_payload(command_text: str, stdin: str) -> bytes:
    payload = stdin + "\n"
    if is_cat_command(command_text):
        payload += chr(EOF_MARKER)
    return payload.encode("utf-8")


class StdinAttachment:
    """An attach socket opened to a container before it starts so stdin can be fed to it."""

    def __init__(self, container_id: str, sock: Any):
        self.container_id = container_id
        self.socket = sock
        self.collector = OutputCollector(detect_eof=True, on_complete=self.close)
        self._closed = False

    @property
    def _raw(self) -> Any:
        # attach_socket hands back a SocketIO wrapper over a unix socket
        return getattr(self.socket, "_sock", self.socket)

    def write(self, data: bytes) -> None:
        self._raw.sendall(data)

    def frames(self) -> Iterator[Frame]:
        return frames_iter(self.socket, tty=False)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._raw.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Attach socket for {self.container_id} already disconnected: {e}")
        self.socket.close()


class DockerEngine:
    """Runs commands in ephemeral containers created from registered profiles.

    The engine owns the profile registry and the bookkeeping for every container
    it creates. A single caller thread is expected to drive it: create, start,
    get_result and remove for each run, in that order.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        shell: Shell = Shell.SH,
        profiles: Iterable[Profile] = (),
    ):
        self.client = client
        self.api = client.api
        self.shell = shell
        self.profiles: dict[str, Profile] = {}
        self.created_containers: set[str] = set()
        self.used_profiles: dict[str, Profile] = {}
        self._attachments: dict[str, StdinAttachment] = {}
        self.add_profiles(*profiles)

    def add_profiles(self, *profiles: Profile) -> None:
        """Register profiles by name, replacing any existing profile with the same name."""
        for profile in profiles:
            self.profiles[profile.profile_name] = profile

    def get_profiles(self) -> list[Profile]:
        return list(self.profiles.values())

    def create_container(
        self,
        profile_name: str,
        command: Command,
        bindings: Bindings | None,
        working_directory: WorkingDirectory,
        stdin: str | None = None,
        envs: list[str] | None = None,
    ) -> str:
        """Create (but do not start) a container for one run.

        If stdin is given, the command must actually read it or ``get_result``
        will report a timeout.

        Args:
            profile_name: The name of the registered profile to create the container under.
            command: The command to run. The shell prologue is prepended to it in place.
            bindings: Extra host bindings for the container.
            working_directory: The open working directory to mount.
            stdin: Text to feed to the container's stdin. None or empty means no stdin.
            envs: Environment variables in ``NAME=VALUE`` form.

        Returns:
            str: The ID of the created container.

        Raises:
            ProfileNotFoundError: If no profile is registered under ``profile_name``.
            EngineStateError: If the working directory is not open.
            DockerSandboxError: If the runtime fails to create the container or to accept stdin.
        """
        profile = self.profiles.get(profile_name)
        if profile is None:
            raise ProfileNotFoundError(profile_name)

        if not working_directory.is_open:
            raise EngineStateError("The working directory has not been opened or has been closed")

        requires_stdin = bool(stdin)

        command.insert(0, self.shell.executable)
        command.insert(1, "-c")

        limits = profile.limits
        try:
            host_config = self.api.create_host_config(
                mounts=[Mount(target=working_directory.path, source=working_directory.name, type="volume")],
                binds=[str(binding) for binding in bindings or ()],
                nano_cpus=limits.cpu_count * NANO_CPUS,
                mem_limit=limits.memory,
            )
            response = self.api.create_container(
                profile.image_name,
                command=list(command),
                host_config=host_config,
                stdin_open=requires_stdin,
                tty=False,
                environment=list(envs or []),
                user=profile.user,
                name=profile.container_name,
                working_dir=working_directory.path,
                network_disabled=profile.network_disabled,
            )
        except DockerException as e:
            logger.error(f"Failed to create container for profile {profile_name}: {e}")
            raise DockerSandboxError(f"Failed to create container for profile {profile_name}") from e

        container_id: str = response["Id"]
        self.created_containers.add(container_id)
        self.used_profiles[container_id] = profile
        logger.info(f"Created container {container_id[:12]} from profile {profile_name}")

        if stdin:
            self._attach_stdin(container_id, command[-1], stdin)

        return container_id

    def _attach_stdin(self, container_id: str, command_text: str, stdin: str) -> None:
        try:
            sock = self.api.attach_socket(
                container_id,
                params={"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1, "logs": 1},
            )
            attachment = StdinAttachment(container_id, sock)
            attachment.write(stdin_payload(command_text, stdin))
        except (DockerException, OSError) as e:
            logger.error(f"Failed to write stdin to container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to write stdin to container: {container_id}") from e

        self._attachments[container_id] = attachment

    def start_container(self, container_id: str) -> None:
        """Start a created container. Starting an already started container is a no-op."""
        try:
            self.api.start(container_id)
        except APIError as e:
            if e.status_code == HTTP_NOT_MODIFIED:
                logger.debug(f"Container {container_id[:12]} already started")
                return
            logger.error(f"Failed to start container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to start container: {container_id}") from e
        except DockerException as e:
            logger.error(f"Failed to start container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to start container: {container_id}") from e
        logger.info(f"Started container {container_id[:12]}")

    def stop_container(self, container_id: str) -> None:
        """Stop a container. Stopping an already stopped container is a no-op."""
        try:
            self.api.stop(container_id)
        except APIError as e:
            if e.status_code == HTTP_NOT_MODIFIED:
                logger.debug(f"Container {container_id[:12]} already stopped")
                return
            logger.error(f"Failed to stop container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to stop container: {container_id}") from e
        except DockerException as e:
            logger.error(f"Failed to stop container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to stop container: {container_id}") from e
        logger.info(f"Stopped container {container_id[:12]}")

    def _follow_logs(self, container_id: str) -> tuple[OutputCollector, list[Any]]:
        collector = OutputCollector()
        streams: list[tuple[int, Any]] = []
        try:
            for stream_type in (STDOUT, STDERR):
                stream = self.api.logs(
                    container_id,
                    stdout=stream_type == STDOUT,
                    stderr=stream_type == STDERR,
                    stream=True,
                    follow=True,
                )
                streams.append((stream_type, stream))
        except DockerException as e:
            for _, stream in streams:
                stream.close()
            logger.error(f"Failed to follow logs of container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to follow logs of container: {container_id}") from e

        # Both streams must be open before draining starts
        collector.follow_all(
            [
                (self._typed_frames(stream_type, stream), f"logs-{container_id[:12]}-{stream_type}")
                for stream_type, stream in streams
            ]
        )
        return collector, [stream for _, stream in streams]

    @staticmethod
    def _typed_frames(stream_type: int, stream: Iterable[bytes]) -> Iterator[Frame]:
        for chunk in stream:
            yield stream_type, chunk

    def get_result(self, container_id: str) -> Result:
        """Wait for a started container to finish and collect its result.

        Waits at most the profile's timeout for output to complete. On timeout the
        container is stopped, but never removed; call ``remove_container`` afterwards.

        Args:
            container_id: The ID of a container created and started through this engine.

        Returns:
            Result: Captured output, exit code, OOM and timeout flags, and duration.

        Raises:
            EngineStateError: If the container was not created through this engine.
            DockerSandboxError: If the output stream or the inspection fails.
        """
        profile = self.used_profiles.get(container_id)
        if profile is None:
            raise EngineStateError(
                f"The container: {container_id} has not been created yet and has no profile assigned to it"
            )

        timeout = profile.limits.timeout
        attachment = self._attachments.pop(container_id, None)
        log_streams: list[Any] = []

        if attachment is None:
            collector, log_streams = self._follow_logs(container_id)
        else:
            collector = attachment.collector
            collector.follow(attachment.frames(), name=f"attach-{container_id[:12]}")

        timed_out = not collector.await_completion(timeout)

        if timed_out:
            logger.warning(f"Container {container_id[:12]} timed out after {timeout} seconds")
            self.stop_container(container_id)
            collector.complete()

        if attachment is not None:
            attachment.close()
        for stream in log_streams:
            stream.close()

        if collector.error is not None and not timed_out:
            raise DockerSandboxError(
                f"Failed to read output of container: {container_id}"
            ) from collector.error

        try:
            state = self.api.inspect_container(container_id)["State"]
        except DockerException as e:
            logger.error(f"Failed to inspect container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to inspect container: {container_id}") from e

        exit_code = state.get("ExitCode")

        return Result(
            exit_code=UNKNOWN_EXIT_CODE if exit_code is None else int(exit_code),
            stdout=collector.stdout,
            stderr=collector.stderr,
            out_of_memory=bool(state.get("OOMKilled")),
            timed_out=timed_out,
            duration=compute_duration(state),
        )

    def remove_container(self, container_id: str) -> None:
        """Force remove a container and forget it."""
        attachment = self._attachments.pop(container_id, None)
        if attachment is not None:
            attachment.close()

        try:
            self.api.remove_container(container_id, force=True)
        except DockerException as e:
            logger.error(f"Failed to remove container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to remove container: {container_id}") from e

        self.created_containers.discard(container_id)
        self.used_profiles.pop(container_id, None)
        logger.info(f"Removed container {container_id[:12]}")

    def cleanup_containers(self) -> None:
        """Remove every container created by this engine that still exists.

        Call this when a run fails part way so leftover containers do not cause
        name conflicts on the next attempt.
        """
        if not self.created_containers:
            return

        try:
            containers = self.api.containers(all=True, filters={"id": sorted(self.created_containers)})
        except DockerException as e:
            logger.error(f"Failed to list containers for cleanup: {e}")
            raise DockerSandboxError("Failed to list containers for cleanup") from e

        listed = {container["Id"] for container in containers}
        logger.info(f"Cleaning up {len(listed)} container(s)")
        for container_id in listed:
            self.remove_container(container_id)

        # Anything not listed no longer exists in the runtime
        for container_id in self.created_containers - listed:
            self.created_containers.discard(container_id)
            self.used_profiles.pop(container_id, None)
            attachment = self._attachments.pop(container_id, None)
            if attachment is not None:
                attachment.close()

    def create_volume(self, name: str) -> dict[str, Any]:
        """Create a named volume. Creating an existing name returns the existing volume."""
        try:
            volume: dict[str, Any] = self.api.create_volume(name)
        except DockerException as e:
            logger.error(f"Failed to create volume {name}: {e}")
            raise DockerSandboxError(f"Failed to create volume: {name}") from e
        logger.info(f"Created volume {name}")
        return volume

    def remove_volume(self, name: str) -> None:
        """Force remove a named volume.

        Raises:
            VolumeInUseError: If a container still references the volume.
            DockerSandboxError: For any other runtime failure.
        """
        try:
            self.api.remove_volume(name, force=True)
        except APIError as e:
            if e.status_code == HTTP_CONFLICT:
                logger.error(f"Volume {name} is still in use: {e}")
                raise VolumeInUseError(f"Failed to remove underlying volume: {e.explanation}") from e
            logger.error(f"Failed to remove volume {name}: {e}")
            raise DockerSandboxError(f"Failed to remove volume: {name}") from e
        except DockerException as e:
            logger.error(f"Failed to remove volume {name}: {e}")
            raise DockerSandboxError(f"Failed to remove volume: {name}") from e
        logger.info(f"Removed volume {name}")

    def copy_tar_to_container(self, container_id: str, remote_path: str, tar_stream: BinaryIO) -> None:
        """Extract a (possibly compressed) tar archive into ``remote_path`` of a container."""
        try:
            self.api.put_archive(container_id, remote_path, tar_stream)
        except DockerException as e:
            logger.error(f"Failed to copy archive to container {container_id[:12]}: {e}")
            raise DockerSandboxError(f"Failed to copy archive to container: {container_id}") from e

    def open(self, path: str) -> WorkingDirectory:
        """Create and open a working directory mounted at ``path`` in containers."""
        working_directory = WorkingDirectory(self, path)
        working_directory.open()
        return working_directory

    def close(self) -> None:
        """Close the connection to the runtime."""
        self.client.close()
