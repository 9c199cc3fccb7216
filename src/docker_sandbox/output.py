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
Collection of container output streamed on background threads.
"""

import threading
from collections.abc import Callable, Iterable

from docker.utils.socket import STDERR, STDOUT

from docker_sandbox.utils.logger import logger

EOF_MARKER = 4

Frame = tuple[int, bytes]


class OutputCollector:
    """Accumulates stdout and stderr frames delivered by one or more streams.

    Each stream passed to ``follow`` is drained on its own daemon thread.
    The caller rendezvouses with those threads through ``await_completion``,
    which returns once every stream has ended or completion was signalled early.

    When ``detect_eof`` is set, a chunk whose trailing byte is the EOF marker
    (ASCII 4) has that byte stripped and completes collection immediately,
    since a ``cat`` fed stdin this way never closes its output on its own.
    """

    def __init__(self, detect_eof: bool = False, on_complete: Callable[[], None] | None = None):
        self.detect_eof = detect_eof
        self.error: BaseException | None = None
        self._buffers = {STDOUT: bytearray(), STDERR: bytearray()}
        self._lock = threading.Lock()
        self._completed = threading.Event()
        self._pending = 0
        self._on_complete = on_complete
        self._threads: list[threading.Thread] = []

    @property
    def completed(self) -> bool:
        return self._completed.is_set()

    @property
    def stdout(self) -> str:
        with self._lock:
            return self._buffers[STDOUT].decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        with self._lock:
            return self._buffers[STDERR].decode("utf-8", errors="replace")

    def follow(self, frames: Iterable[Frame], name: str = "sandbox-output") -> None:
        """Start draining ``frames`` on a background thread."""
        self.follow_all([(frames, name)])

    def follow_all(self, sources: list[tuple[Iterable[Frame], str]]) -> None:
        """Start draining several frame sources, one thread each.

        Every source is counted as pending before any thread starts, so one
        source ending early cannot complete collection while another is unread.
        """
        with self._lock:
            self._pending += len(sources)
        threads = [
            threading.Thread(target=self._drain, args=(frames,), name=name, daemon=True)
            for frames, name in sources
        ]
        self._threads.extend(threads)
        for thread in threads:
            thread.start()

    def on_frame(self, stream: int, payload: bytes) -> None:
        """Append one frame to the buffer of its stream type."""
        if not payload:
            return

        end = self.detect_eof and payload[-1] == EOF_MARKER
        if end:
            payload = payload[:-1]

        with self._lock:
            buffer = self._buffers.get(stream)
            if buffer is not None:
                buffer.extend(payload)

        if end:
            logger.debug("EOF marker received, completing output collection")
            self.complete()

    def complete(self) -> None:
        """Signal that no more output is expected."""
        if self._completed.is_set():
            return
        self._completed.set()
        if self._on_complete is not None:
            self._on_complete()

    def await_completion(self, timeout: float) -> bool:
        """Block until output collection completes.

        Returns:
            bool: True if collection completed within ``timeout`` seconds, False otherwise.
        """
        return self._completed.wait(timeout)

    def _drain(self, frames: Iterable[Frame]) -> None:
        try:
            for stream, payload in frames:
                if self._completed.is_set():
                    break
                self.on_frame(stream, payload)
        except Exception as e:
            # A stream torn down after completion (stop or socket shutdown) is expected
            if not self._completed.is_set():
                logger.warning(f"Output stream failed: {e}")
                self.error = e
        finally:
            with self._lock:
                self._pending -= 1
                drained = self._pending == 0
            if drained:
                self.complete()
