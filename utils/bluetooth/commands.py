"""
Serialized command dispatch to bluetoothctl.

bluetoothctl has one stdin and answers on the same stdout that carries its
asynchronous device chatter, without marking where a reply ends. Commands
are therefore queued and run by a single worker: each request gets its own
capture window, the command is written, and whatever arrives until the
request's timeout is its response. Windows never overlap.
"""

from __future__ import annotations

import queue
import re
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Optional

import config
from utils.bluetooth.models import BluetoothCommandError, BluetoothNotConnectedError
from utils.logging import bluetooth_logger as logger

SCAN_COMMAND_PATTERN = re.compile(r'^(?:scan|power)\s+\S+$', re.IGNORECASE)
PAIR_COMMAND_PATTERN = re.compile(r'^(?:pair|connect)\s+', re.IGNORECASE)
TRUST_COMMAND_PATTERN = re.compile(r'^trust\s+', re.IGNORECASE)
INFO_COMMAND_PATTERN = re.compile(r'^info\s+', re.IGNORECASE)


def default_timeout(command: str) -> float:
    """Pick the response window for a command by its class."""
    command = command.strip()
    if SCAN_COMMAND_PATTERN.match(command):
        return config.BT_SCAN_TIMEOUT
    if PAIR_COMMAND_PATTERN.match(command):
        return config.BT_PAIR_TIMEOUT
    if TRUST_COMMAND_PATTERN.match(command):
        return config.BT_TRUST_TIMEOUT
    if INFO_COMMAND_PATTERN.match(command):
        return config.BT_INFO_TIMEOUT
    return config.BT_COMMAND_TIMEOUT


class CaptureWindow:
    """Output collected for one command while its window is open."""

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._chunks.append(text)

    def text(self) -> str:
        with self._lock:
            return ''.join(self._chunks)


@dataclass
class CommandRequest:
    """A command waiting for, or occupying, the worker."""
    command: str
    timeout: float
    future: Future = field(default_factory=Future)
    capture: CaptureWindow = field(default_factory=CaptureWindow)
    aborted: threading.Event = field(default_factory=threading.Event)
    abort_reason: str = ''

    def abort(self, reason: str) -> None:
        self.abort_reason = reason
        self.aborted.set()


_SHUTDOWN = object()


class CommandDispatcher:
    """Single-worker FIFO queue in front of the tool's input pipe."""

    def __init__(
        self,
        write: Callable[[str], None],
        is_running: Callable[[], bool],
        queue_delay: float | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            write: Writes raw text to the tool's stdin
            is_running: Reports whether the tool process is alive
            queue_delay: Pause between consecutive commands, in seconds
        """
        self._write = write
        self._is_running = is_running
        self.queue_delay = config.BT_COMMAND_QUEUE_DELAY if queue_delay is None else queue_delay

        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._current: Optional[CommandRequest] = None
        self._worker: Optional[threading.Thread] = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def submit(self, command: str, timeout: float | None = None) -> Future:
        """Queue a command and return a future resolving to its captured output."""
        command = command.strip()
        if not command:
            raise ValueError("Command is required")
        if self._closed:
            raise BluetoothCommandError('Command dispatcher is shut down', command)
        if not self._is_running():
            raise BluetoothNotConnectedError()

        request = CommandRequest(
            command=command,
            timeout=default_timeout(command) if timeout is None else timeout,
        )
        self._ensure_worker()
        self._queue.put(request)
        return request.future

    def send(self, command: str, timeout: float | None = None) -> str:
        """
        Send a command and block until its response window closes.

        Returns:
            Everything the tool printed while the window was open

        Raises:
            BluetoothNotConnectedError: If the tool is not running
            BluetoothCommandError: If the tool died before the window closed
        """
        return self.submit(command, timeout).result()

    def pending_count(self) -> int:
        """Number of commands queued or in flight."""
        with self._lock:
            in_flight = 1 if self._current is not None else 0
        return self._queue.qsize() + in_flight

    # -------------------------------------------------------------------------
    # Output side
    # -------------------------------------------------------------------------

    def capture(self, text: str) -> None:
        """Feed tool output into the open window, if any."""
        with self._lock:
            current = self._current
        if current is not None:
            current.capture.append(text)

    def reject_pending(self, reason: str = 'bluetoothctl process exited') -> int:
        """Reject the in-flight command and everything queued behind it."""
        rejected = 0
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                break
            if request is _SHUTDOWN:
                self._queue.put(request)
                break
            if request.future.set_running_or_notify_cancel():
                request.future.set_exception(BluetoothCommandError(reason, request.command))
                rejected += 1

        with self._lock:
            current = self._current
        if current is not None:
            current.abort(reason)
            rejected += 1

        if rejected:
            logger.warning(f"Rejected {rejected} pending bluetooth command(s): {reason}")
        return rejected

    def shutdown(self) -> None:
        self._closed = True
        self.reject_pending('Command dispatcher shut down')
        self._queue.put(_SHUTDOWN)

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name='bt-command-worker', daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            request = self._queue.get()
            if request is _SHUTDOWN:
                break
            if not request.future.set_running_or_notify_cancel():
                continue

            try:
                output = self._execute(request)
            except Exception as e:
                request.future.set_exception(e)
            else:
                request.future.set_result(output)

            if self.queue_delay > 0:
                time.sleep(self.queue_delay)

    def _execute(self, request: CommandRequest) -> str:
        if not self._is_running():
            raise BluetoothNotConnectedError()

        logger.info(f"[command] {request.command}")
        with self._lock:
            self._current = request
        try:
            try:
                self._write(request.command + '\n')
            except (OSError, ValueError) as e:
                raise BluetoothCommandError(
                    f"Failed to write command: {e}", request.command
                ) from e

            # Event.wait is monotonic; the window stays open for the full timeout
            if request.aborted.wait(request.timeout):
                raise BluetoothCommandError(request.abort_reason, request.command)
        finally:
            with self._lock:
                self._current = None

        output = request.capture.text()
        logger.debug(f"[command] {request.command} -> {output[:200]!r}")
        return output
