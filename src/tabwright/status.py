"""
Hierarchical status messages for a running job.

Each entry holds the full message as published, so nested operations read as
``outer -- inner`` and popping restores the previous text exactly.
"""

from __future__ import annotations

from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

SEPARATOR = " -- "

StatusSink = Callable[[str], None]


def _discard(_msg: str) -> None:
    pass


class StatusStack:
    """
    Per-session status message buffer.

    Every change is published to ``sink``, the single-argument "set current
    status" callback supplied by whoever runs the job.
    """

    def __init__(
        self,
        sink: StatusSink | None = None,
        log_activity: bool = False,
        label: str | None = None,
    ) -> None:
        self._sink = sink or _discard
        self._entries: list[str] = []
        self._log_activity = log_activity
        self._log = logger.bind(component="status", job=label)

    @property
    def current(self) -> str:
        """The message on top of the stack, or an empty string."""
        return self._entries[-1] if self._entries else ""

    @property
    def depth(self) -> int:
        return len(self._entries)

    def update(self, msg: str) -> None:
        """Replace the top message in place; with an empty stack this is a push."""
        if not self._entries:
            self.push(msg)
            return
        self._sink(msg)
        self._entries[-1] = msg

    def push(self, msg: str) -> None:
        """Push ``msg`` nested under the current message."""
        prev = self.current
        if prev:
            msg = f"{prev}{SEPARATOR}{msg}"
        self._sink(msg)
        self._entries.append(msg)

    def pop(self, log_activity: bool = True) -> str | None:
        """
        Drop the top message and republish the one beneath it.

        Args:
            log_activity: If False, never log the dropped message, even when
                activity logging is enabled.

        Returns:
            The dropped message, or None if the stack was empty.
        """
        msg = self._entries.pop() if self._entries else None
        if msg is not None and log_activity and self._log_activity:
            self._log.info(msg)
        self._sink(self.current)
        return msg
