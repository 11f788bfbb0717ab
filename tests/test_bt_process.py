"""Tests for the child process supervisor, using a Python line echo as the tool."""

import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.bluetooth.models import BluetoothNotConnectedError, BluetoothUnavailableError
from utils.bluetooth.process import ProcessSupervisor

ECHO_TOOL = '''
import sys
for line in sys.stdin:
    if line.strip() == "exit":
        sys.exit(3)
    sys.stdout.write("echo: " + line)
    sys.stdout.flush()
'''


class Recorder:
    def __init__(self):
        self.output = []
        self.exits = []
        self.exited = threading.Event()

    def on_output(self, data):
        self.output.append(data)

    def on_exit(self, returncode):
        self.exits.append(returncode)
        self.exited.set()

    def text(self):
        return b''.join(self.output).decode()

    def wait_for_output(self, needle, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if needle in self.text():
                return True
            time.sleep(0.01)
        return False


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def supervisor(recorder):
    supervisor = ProcessSupervisor(
        command=[sys.executable, '-u', '-c', ECHO_TOOL],
        on_output=recorder.on_output,
        on_exit=recorder.on_exit,
    )
    yield supervisor
    supervisor.on_exit = None
    supervisor.stop()


def test_start_and_write(supervisor, recorder):
    supervisor.start()
    assert supervisor.is_running
    assert supervisor.pid is not None

    supervisor.write('devices\n')
    assert recorder.wait_for_output('echo: devices')


def test_unexpected_exit_is_reported_once(supervisor, recorder):
    supervisor.start()
    supervisor.write('exit\n')

    assert recorder.exited.wait(timeout=5)
    time.sleep(0.1)
    assert recorder.exits == [3]
    assert not supervisor.is_running


def test_stop_reports_exit(supervisor, recorder):
    supervisor.start()
    supervisor.stop()

    assert recorder.exited.wait(timeout=5)
    assert len(recorder.exits) == 1
    assert not supervisor.is_running


def test_restart_does_not_report_replaced_process(supervisor, recorder):
    supervisor.start()
    first_pid = supervisor.pid
    supervisor.start()

    assert supervisor.pid != first_pid
    time.sleep(0.3)
    assert recorder.exits == []

    supervisor.write('still here\n')
    assert recorder.wait_for_output('echo: still here')


def test_write_when_not_running(supervisor):
    with pytest.raises(BluetoothNotConnectedError):
        supervisor.write('devices\n')


def test_spawn_failure(recorder):
    supervisor = ProcessSupervisor(
        command=['/nonexistent/bluetoothctl'],
        on_exit=recorder.on_exit,
    )
    with pytest.raises(BluetoothUnavailableError):
        supervisor.start()
    assert not supervisor.is_running
    assert recorder.exits == []
