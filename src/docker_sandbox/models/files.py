# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class UploadedFile(BaseModel):
    """A host file or directory to stage into a working directory.

    Attributes:
        name: The name the file will have in the working directory.
        path: The path of the file on the host.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path

    @classmethod
    def from_path(cls, path: str | Path) -> "UploadedFile":
        path = Path(path)
        return cls(name=path.name, path=path)
