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
Shared working directory backed by a Docker volume.
"""

import os
import tarfile
import tempfile
from types import TracebackType
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from docker_sandbox.exceptions import DockerSandboxError, EngineStateError
from docker_sandbox.models import UploadedFile
from docker_sandbox.utils.logger import logger

if TYPE_CHECKING:
    from docker_sandbox.engine import DockerEngine


class WorkingDirectory:
    """A volume mounted at the same path in every container of a session.

    Files produced by one container are visible to the next one that mounts the
    working directory. Files can only be added from the host, not retrieved.

    Instances are created through ``DockerEngine.open``. Runs sharing a working
    directory must be sequenced by the caller; nothing here serialises concurrent
    writers.
    """

    def __init__(self, engine: "DockerEngine", path: str):
        self.engine = engine
        self.path = path
        self.name = f"sandbox-{uuid4()}"
        self.closed = False
        self._volume: dict[str, Any] | None = None

    @property
    def is_open(self) -> bool:
        return self._volume is not None and not self.closed

    def is_closed(self) -> bool:
        return self.closed

    def open(self) -> None:
        """Create the backing volume. Must be called before files are added."""
        self._volume = self.engine.create_volume(self.name)
        self.closed = False

    def add_files(self, container_id: str, *files: UploadedFile) -> None:
        """Stage files into the working directory through the given container.

        Directories are added recursively. The files are visible to every other
        container that mounts this working directory.

        Args:
            container_id: The created container whose mount receives the files.
            files: The files and directories to upload.

        Raises:
            EngineStateError: If the working directory is not open or has been closed.
            DockerSandboxError: If the archive cannot be built or copied.
        """
        if not self.is_open:
            raise EngineStateError("This WorkingDirectory has not been opened or has been closed")

        tar_path: str | None = None
        try:
            with tempfile.NamedTemporaryFile(prefix=self.name, suffix=".tar.gz", delete=False) as tmp:
                tar_path = tmp.name
                with tarfile.open(fileobj=tmp, mode="w:gz", format=tarfile.PAX_FORMAT) as tar:
                    for file in files:
                        # tarfile writes a directory's entry before recursing into it
                        tar.add(file.path, arcname=file.name, recursive=True)

            logger.info(f"Uploading {len(files)} file(s) to {self.path} in container {container_id[:12]}")
            with open(tar_path, "rb") as tar_stream:
                self.engine.copy_tar_to_container(container_id, self.path, tar_stream)
        except (OSError, tarfile.TarError) as e:
            logger.error(f"Failed to add files to working directory {self.name}: {e}")
            raise DockerSandboxError("An exception occurred when adding files to the working directory") from e
        finally:
            if tar_path is not None:
                try:
                    os.unlink(tar_path)
                except OSError as e:
                    logger.warning(f"Failed to delete temporary archive {tar_path}: {e}")

    def close(self) -> None:
        """Remove the backing volume.

        Raises:
            VolumeInUseError: If a container still mounting the volume was not removed first.
        """
        self.engine.remove_volume(self.name)
        self._volume = None
        self.closed = True

    def __enter__(self) -> "WorkingDirectory":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if not self.closed:
            self.close()
