# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Result of a single container run."""

import math
from typing import ClassVar

from pydantic import BaseModel, ConfigDict

UNKNOWN_EXIT_CODE = -(2**31)


class Result(BaseModel):
    """Represents the outcome of one container run.

    If ``timed_out`` is true, ``stdout`` and ``stderr`` may be incomplete.

    Attributes:
        exit_code: The exit code reported by the runtime, or ``UNKNOWN_EXIT_CODE``.
        stdout: Standard output captured from the container.
        stderr: Standard error captured from the container.
        out_of_memory: Whether the runtime killed the container for exceeding its memory limit.
        timed_out: Whether collecting output exceeded the profile's timeout.
        duration: Execution time in seconds, NaN if the runtime could not report it.
    """

    model_config = ConfigDict(frozen=True)

    UNKNOWN_EXIT_CODE: ClassVar[int] = UNKNOWN_EXIT_CODE

    exit_code: int = UNKNOWN_EXIT_CODE
    stdout: str = ""
    stderr: str = ""
    out_of_memory: bool = False
    timed_out: bool = False
    duration: float = math.nan

    @property
    def exit_code_known(self) -> bool:
        return self.exit_code != UNKNOWN_EXIT_CODE
