"""Tests for the serialized command dispatcher."""

import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.bluetooth.commands import CommandDispatcher, default_timeout
from utils.bluetooth.models import BluetoothCommandError, BluetoothNotConnectedError


class FakeTool:
    """Records writes; optionally echoes a reply through the dispatcher."""

    def __init__(self):
        self.running = True
        self.writes = []
        self.dispatcher = None
        self.reply = None

    def write(self, text):
        self.writes.append((time.monotonic(), text))
        if self.reply is not None:
            self.dispatcher.capture(self.reply(text))

    def is_running(self):
        return self.running


@pytest.fixture
def tool():
    return FakeTool()


@pytest.fixture
def dispatcher(tool):
    dispatcher = CommandDispatcher(tool.write, tool.is_running, queue_delay=0)
    tool.dispatcher = dispatcher
    yield dispatcher
    dispatcher.shutdown()


class TestDefaultTimeout:
    def test_command_classes(self, mocker):
        mocker.patch('config.BT_SCAN_TIMEOUT', 2.0)
        mocker.patch('config.BT_PAIR_TIMEOUT', 10.0)
        mocker.patch('config.BT_TRUST_TIMEOUT', 5.0)
        mocker.patch('config.BT_INFO_TIMEOUT', 1.5)
        mocker.patch('config.BT_COMMAND_TIMEOUT', 4.0)

        assert default_timeout('scan bredr') == 2.0
        assert default_timeout('power off') == 2.0
        assert default_timeout('pair 00:11:22:33:44:56') == 10.0
        assert default_timeout('connect 00:11:22:33:44:56') == 10.0
        assert default_timeout('trust 00:11:22:33:44:56') == 5.0
        assert default_timeout('info 00:11:22:33:44:56') == 1.5
        assert default_timeout('devices') == 4.0
        assert default_timeout('remove 00:11:22:33:44:56') == 4.0


class TestCommandDispatcher:
    def test_resolves_no_earlier_than_timeout(self, dispatcher, tool):
        tool.reply = lambda text: 'Discovery started\n'
        started = time.monotonic()
        output = dispatcher.send('scan bredr', timeout=0.3)
        elapsed = time.monotonic() - started

        assert elapsed >= 0.3
        assert output == 'Discovery started\n'
        assert tool.writes[0][1] == 'scan bredr\n'

    def test_resolves_exactly_once(self, dispatcher):
        future = dispatcher.submit('scan bredr', timeout=0.1)
        callbacks = []
        future.add_done_callback(lambda f: callbacks.append(f.result()))
        future.result(timeout=2)
        time.sleep(0.1)
        assert len(callbacks) == 1

    def test_fails_fast_when_not_running(self, dispatcher, tool):
        tool.running = False
        with pytest.raises(BluetoothNotConnectedError):
            dispatcher.send('scan bredr', timeout=5)
        assert tool.writes == []

    def test_empty_command(self, dispatcher):
        with pytest.raises(ValueError):
            dispatcher.submit('   ')

    def test_fifo_and_windows_do_not_overlap(self, dispatcher, tool):
        tool.reply = lambda text: f'reply to {text.strip()}\n'
        futures = [dispatcher.submit(f'cmd {i}', timeout=0.15) for i in range(3)]
        outputs = [f.result(timeout=5) for f in futures]

        assert [text for _, text in tool.writes] == ['cmd 0\n', 'cmd 1\n', 'cmd 2\n']
        assert outputs == ['reply to cmd 0\n', 'reply to cmd 1\n', 'reply to cmd 2\n']

        times = [at for at, _ in tool.writes]
        assert times[1] - times[0] >= 0.15
        assert times[2] - times[1] >= 0.15

    def test_output_outside_window_is_not_captured(self, dispatcher):
        dispatcher.capture('[NEW] Device 00:11:22:33:44:56 JBL\n')
        assert dispatcher.send('devices', timeout=0.05) == ''

    def test_pending_count(self, dispatcher):
        first = dispatcher.submit('cmd 1', timeout=0.3)
        second = dispatcher.submit('cmd 2', timeout=0.3)
        time.sleep(0.1)
        assert dispatcher.pending_count() == 2
        first.result(timeout=5)
        second.result(timeout=5)
        assert dispatcher.pending_count() == 0

    def test_reject_pending_on_process_death(self, dispatcher, tool):
        in_flight = dispatcher.submit('pair 00:11:22:33:44:56', timeout=10)
        queued = dispatcher.submit('trust 00:11:22:33:44:56', timeout=10)

        # Wait for the first command to be written
        deadline = time.monotonic() + 2
        while not tool.writes and time.monotonic() < deadline:
            time.sleep(0.01)

        tool.running = False
        started = time.monotonic()
        assert dispatcher.reject_pending('bluetoothctl exited') == 2

        with pytest.raises(BluetoothCommandError, match='bluetoothctl exited'):
            in_flight.result(timeout=2)
        with pytest.raises(BluetoothCommandError):
            queued.result(timeout=2)
        assert time.monotonic() - started < 2
        assert len(tool.writes) == 1

    def test_write_failure_rejects_request(self, tool):
        def broken_write(text):
            raise BrokenPipeError('pipe closed')

        dispatcher = CommandDispatcher(broken_write, tool.is_running, queue_delay=0)
        try:
            with pytest.raises(BluetoothCommandError, match='Failed to write'):
                dispatcher.send('devices', timeout=0.1)
        finally:
            dispatcher.shutdown()

    def test_submit_after_shutdown(self, dispatcher):
        dispatcher.shutdown()
        with pytest.raises(BluetoothCommandError):
            dispatcher.submit('devices')

    def test_concurrent_senders_are_serialized(self, dispatcher, tool):
        tool.reply = lambda text: f'{text.strip()} done\n'
        results = {}

        def worker(i):
            results[i] = dispatcher.send(f'cmd {i}', timeout=0.05)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert results == {i: f'cmd {i} done\n' for i in range(5)}
