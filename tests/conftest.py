import json
import threading

import pytest

from fleetlink.core.errors import ChannelClosed


class DummySink:
    """Outbound sink recording every line sent to it."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self._lock = threading.Lock()

    def send(self, text):
        if self.fail:
            raise ChannelClosed("dummy sink closed")
        with self._lock:
            self.sent.append(text)

    def packets(self):
        return [json.loads(t) for t in self.sent]


class DummyChannel(DummySink):
    """Inbound side too: replays a fixed list of lines, then end-of-stream."""

    def __init__(self, lines=(), peer="127.0.0.1:5000", error_after=None):
        super().__init__()
        self._lines = list(lines)
        self.peer = peer
        self.error_after = error_after

    def lines(self):
        for i, line in enumerate(self._lines):
            if self.error_after is not None and i >= self.error_after:
                raise ChannelClosed("connection reset")
            yield line


class DummyBroadcast:
    def __init__(self):
        self.published = []
        self.device_snapshots = []

    def publish(self, raw_text):
        self.published.append(raw_text)

    def publish_devices(self, snapshot):
        self.device_snapshots.append(snapshot)

    def start(self):
        pass

    def stop(self):
        pass


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, secs):
        self.sleeps.append(secs)
        self.now += secs


@pytest.fixture
def broadcast():
    return DummyBroadcast()


@pytest.fixture
def clock():
    return FakeClock()
