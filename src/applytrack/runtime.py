"""Daemon lifecycle: scheduler start/stop, signals, and status dumps."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

from .scheduler import ScanScheduler

SignalHandler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None

LOGGER = logging.getLogger(__name__)
SIG_USR1 = getattr(signal, "SIGUSR1", None)
POLL_SECONDS = 0.5


class DaemonRuntime:
    """Keep the scan scheduler alive until asked to stop."""

    def __init__(
        self,
        scheduler: ScanScheduler,
        *,
        status_callback: Callable[[dict[str, Any]], str | None] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._stop_event = threading.Event()
        self._status_event = threading.Event()
        self._installed_signals: dict[int, SignalHandler] = {}
        self._status_callback = status_callback

    def run(self, *, initial_scan: bool = True) -> None:
        self._install_signal_handlers()
        try:
            if not self._scheduler.start():
                LOGGER.warning("Mailbox scanning is disabled; daemon has nothing to do.")
                return
            if initial_scan:
                LOGGER.info("Running initial scan cycle")
                self._scheduler.run_now()
            self._wait_for_stop()
        finally:
            self._scheduler.shutdown()
            self._restore_signal_handlers()

    def stop(self) -> None:
        self._stop_event.set()

    def request_status(self) -> None:
        self._status_event.set()

    def _wait_for_stop(self) -> None:
        while not self._stop_event.is_set():
            try:
                if self._status_event.is_set():
                    self._status_event.clear()
                    self._dump_status()
                self._stop_event.wait(POLL_SECONDS)
            except KeyboardInterrupt:
                LOGGER.info("Interrupt received; shutting down applytrack daemon.")
                self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        interested = tuple(
            sig for sig in (signal.SIGTERM, signal.SIGINT, SIG_USR1) if sig is not None
        )
        for sig in interested:
            try:
                previous = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except (OSError, ValueError):  # pragma: no cover - unsupported platform signal
                continue
            self._installed_signals[sig] = previous

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._installed_signals.items():
            try:
                signal.signal(sig, handler)
            except (OSError, TypeError, ValueError):  # pragma: no cover - unsupported platform
                continue
        self._installed_signals.clear()

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if signum in (signal.SIGTERM, signal.SIGINT):
            LOGGER.info("Signal %s received; initiating shutdown.", signum)
            self._stop_event.set()
        elif SIG_USR1 is not None and signum == SIG_USR1:
            LOGGER.info("SIGUSR1 received; emitting daemon status.")
            self._status_event.set()

    def _dump_status(self) -> None:
        snapshot = self._scheduler.status_snapshot()
        if self._status_callback:
            try:
                message = self._status_callback(snapshot)
            except Exception:
                LOGGER.exception("Daemon status callback failed")
                message = None
            if message:
                LOGGER.info(message)
                return
        LOGGER.info(
            "applytrack status: state=%s cycles=%s skipped_ticks=%s created=%s updated=%s",
            snapshot["state"],
            snapshot["cycles"],
            snapshot["skipped_ticks"],
            snapshot["created"],
            snapshot["updated"],
        )


__all__ = ["DaemonRuntime"]
