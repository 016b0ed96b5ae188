"""Cooperative cancellation shared by the orchestrator and its stages."""

from __future__ import annotations

import signal
import threading

from stackdeploy.common.errors import PipelineCancelled


class CancellationToken:
    def __init__(self) -> None:
        self.event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self.reason is None:
            self.reason = reason
        self.event.set()

    def is_set(self) -> bool:
        return self.event.is_set()

    def sleep(self, seconds: float) -> None:
        # Interruptible sleep, used as the tenacity sleep hook.
        self.event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self.event.is_set():
            raise PipelineCancelled(f"Run cancelled: {self.reason}")


def install_signal_handlers(token: CancellationToken) -> None:
    """Route SIGINT/SIGTERM to ``token``. Only valid on the main thread."""

    def _handler(signum, _frame) -> None:
        token.cancel(reason=signal.Signals(signum).name)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
