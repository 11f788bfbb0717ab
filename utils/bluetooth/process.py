"""
Lifecycle supervision for the bluetoothctl child process.
"""

from __future__ import annotations

import subprocess
import threading
from typing import IO, Callable, Optional

import config
from utils.bluetooth.models import BluetoothNotConnectedError, BluetoothUnavailableError
from utils.constants import BT_TERMINATE_TIMEOUT, PIPE_READ_SIZE
from utils.dependencies import get_tool_path
from utils.logging import bluetooth_logger as logger


class ProcessSupervisor:
    """Owns the tool's process handle, its three pipes and its exit notification."""

    def __init__(
        self,
        command: list[str] | None = None,
        on_output: Callable[[bytes], None] | None = None,
        on_exit: Callable[[int | None], None] | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        """
        Initialize the supervisor.

        Args:
            command: argv of the tool, defaults to config.BT_TOOL
            on_output: Called from the reader thread with every stdout chunk
            on_exit: Called once per spawned process with its return code
            popen: Process factory, swappable for tests
        """
        self.command = command or [get_tool_path(config.BT_TOOL) or config.BT_TOOL]
        self.on_output = on_output
        self.on_exit = on_exit
        self._popen = popen

        self._lock = threading.RLock()
        self._process: Optional[subprocess.Popen] = None
        self._generation = 0
        self._stopping: set[int] = set()

    @property
    def pid(self) -> int | None:
        with self._lock:
            return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        """
        Spawn a fresh process, terminating any running one first.

        Raises:
            BluetoothUnavailableError: If the tool cannot be spawned
        """
        with self._lock:
            if self._process is not None:
                self._terminate_locked()

            try:
                process = self._popen(
                    self.command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    bufsize=0,
                )
            except OSError as e:
                logger.error(f"Failed to start {self.command[0]}: {e}")
                raise BluetoothUnavailableError(f"Failed to start {self.command[0]}: {e}") from e

            self._generation += 1
            self._process = process
            generation = self._generation

        logger.info(f"Started {self.command[0]} (pid {process.pid})")

        threading.Thread(
            target=self._read_stdout, args=(process, generation),
            name='bt-stdout-reader', daemon=True
        ).start()
        threading.Thread(
            target=self._read_stderr, args=(process.stderr,),
            name='bt-stderr-reader', daemon=True
        ).start()

    def stop(self) -> None:
        """Terminate the running process, if any."""
        with self._lock:
            if self._process is not None:
                self._terminate_locked()

    def restart(self) -> None:
        self.stop()
        self.start()

    def write(self, text: str) -> None:
        """Write raw text to the tool's stdin."""
        with self._lock:
            process = self._process
            if process is None or process.poll() is not None or process.stdin is None:
                raise BluetoothNotConnectedError()
            process.stdin.write(text.encode('utf-8'))
            process.stdin.flush()

    def _terminate_locked(self) -> None:
        process = self._process
        self._process = None
        if process is None:
            return

        self._stopping.add(self._generation)
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=BT_TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning(f"{self.command[0]} did not terminate, killing it")
                process.kill()
                process.wait()
        logger.info(f"Stopped {self.command[0]} (pid {process.pid})")

    def _read_stdout(self, process: subprocess.Popen, generation: int) -> None:
        stdout: IO[bytes] = process.stdout
        try:
            while True:
                data = stdout.read(PIPE_READ_SIZE)
                if not data:
                    break
                if self.on_output:
                    try:
                        self.on_output(data)
                    except Exception as e:
                        logger.exception(f"Error handling bluetoothctl output: {e}")
        except (OSError, ValueError) as e:
            logger.debug(f"bluetoothctl stdout closed: {e}")
        finally:
            self._handle_exit(process, generation)

    def _read_stderr(self, stderr: IO[bytes]) -> None:
        try:
            for line in iter(stderr.readline, b''):
                text = line.decode('utf-8', errors='replace').strip()
                if text:
                    logger.warning(f"[bluetoothctl ERR] {text}")
        except (OSError, ValueError):
            pass

    def _handle_exit(self, process: subprocess.Popen, generation: int) -> None:
        returncode = process.wait()

        with self._lock:
            stopped_on_purpose = generation in self._stopping
            self._stopping.discard(generation)
            superseded = generation != self._generation
            if not superseded and self._process is process:
                self._process = None

        if stopped_on_purpose:
            logger.info(f"{self.command[0]} exited with code {returncode} after stop")
        else:
            logger.warning(f"{self.command[0]} exited unexpectedly with code {returncode}")

        # An exit of a process that has already been replaced is history
        if superseded:
            return

        if self.on_exit:
            self.on_exit(returncode)
