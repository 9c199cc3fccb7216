# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import atexit
from pathlib import Path

import anyio
import anyio.to_thread

from docker_sandbox.config import SandboxConfig
from docker_sandbox.engine import DockerEngine
from docker_sandbox.exceptions import EngineStateError
from docker_sandbox.factory import EngineFactory
from docker_sandbox.models import Bindings, Command, Profile, Result, UploadedFile
from docker_sandbox.utils.logger import logger
from docker_sandbox.working_directory import WorkingDirectory


class SandboxAsync:
    """Async-native sandbox session.

    Drives one engine through a start, run many times, finish lifecycle with at
    most one open working directory at a time. Blocking engine calls run in a
    worker thread.
    """

    def __init__(self, config: SandboxConfig | None = None, engine: DockerEngine | None = None):
        """Initializes the SandboxAsync session.

        Args:
            config: Configuration for the sandbox.
            engine: Optional pre-built engine. Built from ``config`` when omitted.
        """
        self.config = config or SandboxConfig()
        self.engine = engine or EngineFactory.get_engine(self.config)
        self.working_directory: WorkingDirectory | None = None
        self.bindings = Bindings()
        self.envs: list[str] = []
        self._exit_hook_registered = False

    async def __aenter__(self) -> "SandboxAsync":
        """Opens the default working directory."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Removes leftover containers if a run failed, then closes the working directory."""
        try:
            if exc_type is not None:
                await self.cleanup()
        finally:
            await self.finish()

    def add_profiles(self, *profiles: Profile) -> None:
        self.engine.add_profiles(*profiles)

    def add_environment_variables(self, *envs: str) -> None:
        """Add ``NAME=VALUE`` environment variables shared by every run."""
        self.envs.extend(envs)

    def _require_started(self) -> WorkingDirectory:
        if self.working_directory is None or self.working_directory.is_closed():
            raise EngineStateError("The sandbox needs to have start called first")
        return self.working_directory

    def _start(self, path: str) -> None:
        if self.working_directory is not None and not self.working_directory.is_closed():
            raise EngineStateError("You must close the previous working directory before opening another one")

        self.working_directory = self.engine.open(path)
        if not self._exit_hook_registered:
            atexit.register(self._exit_hook)
            self._exit_hook_registered = True
        logger.info(f"Sandbox started with working directory {self.working_directory.name} at {path}")

    async def start(self, path: str | None = None) -> None:
        """Opens a working directory and readies the session for runs.

        A process exit hook is registered so resources are released even if
        ``finish`` is never called.

        Args:
            path: The mount path inside containers. Defaults to ``config.working_directory``.

        Raises:
            EngineStateError: If a previously opened working directory is still open.
        """
        await anyio.to_thread.run_sync(self._start, path or self.config.working_directory)

    def _run(
        self,
        profile: str,
        command: Command | str,
        stdin: str | Path | None,
        files: tuple[UploadedFile, ...],
    ) -> Result:
        working_directory = self._require_started()

        if isinstance(command, str):
            command = Command(command)
        if isinstance(stdin, Path):
            stdin = stdin.read_text(encoding="utf-8")

        container_id = self.engine.create_container(
            profile, command, self.bindings, working_directory, stdin, self.envs
        )
        if files:
            working_directory.add_files(container_id, *files)

        self.engine.start_container(container_id)
        result = self.engine.get_result(container_id)
        self.engine.remove_container(container_id)
        return result

    async def run(
        self,
        profile: str,
        command: Command | str,
        stdin: str | Path | None = None,
        *files: UploadedFile,
    ) -> Result:
        """Runs a command in a new container created from a profile.

        Args:
            profile: The name of the profile to use.
            command: The command to execute.
            stdin: Stdin text, or a file whose contents are used as stdin.
            files: Files to upload to the working directory before the container starts.

        Returns:
            Result: The result of the run.
        """
        return await anyio.to_thread.run_sync(self._run, profile, command, stdin, files)

    def _exit_hook(self) -> None:
        # Containers left by an interrupted run still hold the volume
        if self.working_directory is not None and not self.working_directory.is_closed():
            logger.warning("Process exiting with an open sandbox, removing leftover containers")
            self.engine.cleanup_containers()
        self._finish()

    def _finish(self) -> None:
        if self._exit_hook_registered:
            atexit.unregister(self._exit_hook)
            self._exit_hook_registered = False

        working_directory, self.working_directory = self.working_directory, None
        self.envs.clear()
        self.bindings = Bindings()

        if working_directory is not None and not working_directory.is_closed():
            working_directory.close()
            logger.info(f"Sandbox finished, working directory {working_directory.name} removed")

    async def finish(self) -> None:
        """Closes the working directory and resets the session."""
        await anyio.to_thread.run_sync(self._finish)

    async def cleanup(self) -> None:
        """Removes any containers left behind by a failed run."""
        await anyio.to_thread.run_sync(self.engine.cleanup_containers)


class Sandbox:
    """Blocking counterpart of SandboxAsync.

    Drives the same working-directory session, running each call to completion
    through anyio.run. Usable as a context manager.
    """

    def __init__(self, config: SandboxConfig | None = None, engine: DockerEngine | None = None):
        """Initializes the Sandbox facade.

        Args:
            config: Configuration for the sandbox.
            engine: Optional pre-built engine.
        """
        self._async = SandboxAsync(config, engine)

    @property
    def engine(self) -> DockerEngine:
        return self._async.engine

    @property
    def working_directory(self) -> WorkingDirectory | None:
        return self._async.working_directory

    @property
    def bindings(self) -> Bindings:
        return self._async.bindings

    @bindings.setter
    def bindings(self, bindings: Bindings) -> None:
        self._async.bindings = bindings

    @property
    def envs(self) -> list[str]:
        return self._async.envs

    def __enter__(self) -> "Sandbox":
        """Context entry point."""
        anyio.run(self._async.__aenter__)
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context exit point."""
        anyio.run(self._async.__aexit__, exc_type, exc_val, exc_tb)

    def add_profiles(self, *profiles: Profile) -> None:
        self._async.add_profiles(*profiles)

    def add_environment_variables(self, *envs: str) -> None:
        self._async.add_environment_variables(*envs)

    def start(self, path: str | None = None) -> None:
        """Opens a working directory synchronously.

        Args:
            path: The mount path inside containers.
        """
        anyio.run(self._async.start, path)

    def run(
        self,
        profile: str,
        command: Command | str,
        stdin: str | Path | None = None,
        *files: UploadedFile,
    ) -> Result:
        """Runs a command synchronously.

        Args:
            profile: The name of the profile to use.
            command: The command to execute.
            stdin: Stdin text or a file to read it from.
            files: Files to upload to the working directory.

        Returns:
            Result: The result of the run.
        """
        return anyio.run(self._async.run, profile, command, stdin, *files)

    def finish(self) -> None:
        """Closes the working directory synchronously."""
        anyio.run(self._async.finish)

    def cleanup(self) -> None:
        """Removes leftover containers synchronously."""
        anyio.run(self._async.cleanup)
