"""
Tests for the Serial Session
============================

Covers:
- connect/disconnect lifecycle and NotConnectedError
- send_data write-then-flush ordering
- line listener delivery, ordering and removal
- no dispatch after disconnect
- prompt pacing only while an upload is pending
- reader failures surfacing to prompt waiters
"""

import threading
from unittest.mock import Mock

import pytest
import serial

from nodemcu_link.comms.lines import LineEvent
from nodemcu_link.comms.session import PendingOperation, Session
from nodemcu_link.config import LinkConfig
from nodemcu_link.errors import (
    BufferOverflowError,
    CommsError,
    ConnectionError,
    NotConnectedError,
)


# =============================================================================
# Lifecycle Tests
# =============================================================================

class TestSessionLifecycle:
    """Tests for connect() and disconnect()."""

    def test_new_session_not_connected(self, world):
        session = world.session()
        assert not session.connected
        assert session.pending_operation is PendingOperation.NONE

    def test_connect_opens_at_9600(self, world):
        session = world.session().connect()
        port = world.last_port("/dev/ttyUSB0")
        assert session.connected
        assert port.baudrate == 9600
        assert port.reader.alive

    def test_connect_uses_configured_baud(self, world):
        world.session(config=LinkConfig(baud_rate=115200)).connect()
        assert world.last_port("/dev/ttyUSB0").baudrate == 115200

    def test_connect_failure(self, world):
        """A failed open raises ConnectionError and leaves the session closed."""
        world.failures["/dev/ttyUSB0"] = ConnectionError("Serial port not found")
        session = world.session()
        with pytest.raises(ConnectionError):
            session.connect()
        assert not session.connected

    def test_disconnect_closes_port_and_stops_reader(self, world):
        session = world.session().connect()
        port = world.last_port("/dev/ttyUSB0")
        session.disconnect()
        assert not session.connected
        assert not port.is_open
        assert port.reader.stopped

    def test_disconnect_when_not_connected(self, world):
        """Disconnecting a closed session is an error, not a silent no-op."""
        session = world.session()
        with pytest.raises(NotConnectedError, match="disconnect"):
            session.disconnect()

    def test_double_disconnect(self, world):
        session = world.session().connect()
        session.disconnect()
        with pytest.raises(NotConnectedError):
            session.disconnect()

    def test_reconnect_replaces_port(self, world):
        """Connecting twice closes the first port before opening another."""
        session = world.session().connect()
        first = world.last_port("/dev/ttyUSB0")
        session.connect()
        assert not first.is_open
        assert len(world.ports["/dev/ttyUSB0"]) == 2
        assert session.connected

    def test_context_manager(self, world):
        with world.session() as session:
            assert session.connected
        assert not session.connected

    def test_status_lines_written(self, world, console):
        session = world.session(console=console).connect()
        session.disconnect()
        assert console.lines == ["Connecting to device on /dev/ttyUSB0", "Disconnecting"]


# =============================================================================
# Sending Tests
# =============================================================================

class TestSendData:
    """Tests for send_data()."""

    def test_write_then_flush(self, world):
        session = world.session().connect()
        session.send_data("print(1)\n")
        port = world.last_port("/dev/ttyUSB0")
        assert port.written == [b"print(1)\n"]
        assert port.events == ["write", "flush"]

    def test_bytes_sent_unchanged(self, world):
        session = world.session().connect()
        session.send_data(b"\x00\xff\n")
        assert world.last_port("/dev/ttyUSB0").written == [b"\x00\xff\n"]

    def test_sequential_sends_never_interleave(self, world):
        """Every write is followed by its flush before the next write."""
        session = world.session().connect()
        for i in range(3):
            session.send_data(f"x={i}\n")
        assert world.last_port("/dev/ttyUSB0").events == ["write", "flush"] * 3

    def test_send_not_connected(self, world):
        session = world.session()
        with pytest.raises(NotConnectedError, match="send data"):
            session.send_data("x")

    def test_send_after_disconnect(self, world):
        session = world.session().connect()
        session.disconnect()
        with pytest.raises(NotConnectedError):
            session.send_data("x")

    def test_write_failure(self, world):
        session = world.session().connect()
        port = world.last_port("/dev/ttyUSB0")
        port.write = Mock(side_effect=serial.SerialException("write failed"))
        with pytest.raises(ConnectionError, match="write failed"):
            session.send_data("x")


# =============================================================================
# Line Listener Tests
# =============================================================================

class TestLineListeners:
    """Tests for line event delivery."""

    def test_listener_receives_lines_in_order(self, world):
        session = world.session().connect()
        events = []
        session.add_line_listener(events.append)
        port = world.last_port("/dev/ttyUSB0")

        port.feed(b"first\n")
        port.feed(b"sec")
        port.feed(b"ond\n")

        assert [e.text for e in events] == ["first", "second"]
        assert all(isinstance(e, LineEvent) and e.session is session for e in events)

    def test_multiple_listeners(self, world):
        session = world.session().connect()
        a, b = [], []
        session.add_line_listener(a.append)
        session.add_line_listener(b.append)
        world.last_port("/dev/ttyUSB0").feed(b"hello\n")
        assert [e.text for e in a] == [e.text for e in b] == ["hello"]

    def test_remove_listener(self, world):
        session = world.session().connect()
        events = []
        remove = session.add_line_listener(events.append)
        port = world.last_port("/dev/ttyUSB0")
        port.feed(b"one\n")
        remove()
        port.feed(b"two\n")
        assert [e.text for e in events] == ["one"]

    def test_remove_unknown_listener(self, world):
        session = world.session()
        session.remove_line_listener(lambda event: None)

    def test_late_listener_gets_no_replay(self, world):
        session = world.session().connect()
        port = world.last_port("/dev/ttyUSB0")
        port.feed(b"early\n")
        events = []
        session.add_line_listener(events.append)
        port.feed(b"late\n")
        assert [e.text for e in events] == ["late"]

    def test_raw_chunks_echoed_to_console(self, world, console):
        session = world.session(console=console).connect()
        port = world.last_port("/dev/ttyUSB0")
        port.feed(b"abc")
        port.feed(b"> ")
        assert console.raw == ["abc", "> "]

    def test_sessions_do_not_share_buffers(self, world):
        """Partial lines on one session never leak into another."""
        first = world.session("/dev/ttyUSB0").connect()
        second = world.session("/dev/ttyUSB1").connect()
        first_events, second_events = [], []
        first.add_line_listener(first_events.append)
        second.add_line_listener(second_events.append)

        world.last_port("/dev/ttyUSB0").feed(b"AAA")
        world.last_port("/dev/ttyUSB1").feed(b"BBB\n")
        world.last_port("/dev/ttyUSB0").feed(b"\n")

        assert [e.text for e in first_events] == ["AAA"]
        assert [e.text for e in second_events] == ["BBB"]


class TestNoDispatchAfterDisconnect:
    """A listener must never act on a disconnected session."""

    def test_chunk_after_disconnect_dropped(self, world, console):
        session = world.session(console=console).connect()
        port = world.last_port("/dev/ttyUSB0")
        listener = Mock()
        session.add_line_listener(listener)
        session.disconnect()

        # A chunk already in flight in the reader when disconnect ran
        port.reader.protocol.data_received(b"late line\n")

        listener.assert_not_called()
        assert "late line\n" not in console.raw

    def test_listeners_dropped_on_disconnect(self, world):
        """Reconnecting does not resurrect old listeners."""
        session = world.session().connect()
        listener = Mock()
        session.add_line_listener(listener)
        session.disconnect()
        session.connect()
        world.last_port("/dev/ttyUSB0").feed(b"hello\n")
        listener.assert_not_called()

    def test_listener_disconnecting_stops_later_listeners(self, world):
        """If one listener disconnects, the rest are not called."""
        session = world.session().connect()
        later = Mock()
        session.add_line_listener(lambda event: session.disconnect())
        session.add_line_listener(later)
        world.last_port("/dev/ttyUSB0").feed(b"bye\n")
        later.assert_not_called()
        assert not session.connected

    def test_disconnect_from_reader_thread_does_not_join(self):
        """Disconnecting on the reader thread only flags the loop to stop."""
        port = Mock(is_open=True)
        readers = []

        class DisconnectingReader(threading.Thread):
            def __init__(self, serial_instance, protocol_factory):
                super().__init__()
                self.alive = True
                self.stop = Mock()
                readers.append(self)

            def run(self):
                session.disconnect()

        session = Session(
            "/dev/ttyUSB0",
            opener=lambda device, baud_rate: port,
            reader_factory=DisconnectingReader,
        )
        session.connect()
        reader = readers[0]
        reader.join(1)

        reader.stop.assert_not_called()
        assert reader.alive is False
        assert not session.connected
        port.close.assert_called_once()


# =============================================================================
# Prompt Pacing Tests
# =============================================================================

class TestPromptPacing:
    """Tests for pending() and send_and_wait_prompt()."""

    def test_prompt_releases_wait(self, world):
        world.responders["/dev/ttyUSB0"] = lambda port, data: port.feed(b"> ")
        session = world.session().connect()
        with session.pending(PendingOperation.UPLOAD):
            assert session.send_and_wait_prompt("x=1\n", timeout=1.0)

    def test_prompt_split_across_chunks_releases_wait(self, world):
        """At 9600 baud the reader hands over ">" and " " separately."""
        world.chunk_size = 1
        world.responders["/dev/ttyUSB0"] = lambda port, data: port.feed(b"x=1\r\n> ")
        session = world.session().connect()
        with session.pending(PendingOperation.UPLOAD):
            assert session.send_and_wait_prompt("x=1\n", timeout=1.0)

    def test_half_prompt_does_not_release_wait(self, world):
        world.responders["/dev/ttyUSB0"] = lambda port, data: port.feed(b">")
        session = world.session().connect()
        with session.pending(PendingOperation.UPLOAD):
            assert not session.send_and_wait_prompt("x=1\n", timeout=0.01)

    def test_reconnect_forgets_partial_prompt(self, world):
        session = world.session().connect()
        world.last_port("/dev/ttyUSB0").feed(b">")
        session.disconnect()
        session.connect()
        port = world.last_port("/dev/ttyUSB0")
        with session.pending(PendingOperation.UPLOAD):
            port.responder = lambda p, data: p.feed(b" ")
            assert not session.send_and_wait_prompt("x=1\n", timeout=0.01)

    def test_no_prompt_times_out(self, world):
        session = world.session().connect()
        with session.pending(PendingOperation.UPLOAD):
            assert not session.send_and_wait_prompt("x=1\n", timeout=0.01)

    def test_prompt_before_send_is_stale(self, world):
        """A prompt that arrived before the send does not release the wait."""
        session = world.session().connect()
        port = world.last_port("/dev/ttyUSB0")
        with session.pending(PendingOperation.UPLOAD):
            port.feed(b"> ")
            assert not session.send_and_wait_prompt("x=1\n", timeout=0.01)

    def test_prompt_ignored_outside_upload(self, world):
        """Prompt detection only runs while an upload is pending."""
        session = world.session().connect()
        world.last_port("/dev/ttyUSB0").feed(b"> ")
        assert not session._prompt.is_set()

    def test_pacing_requires_upload(self, world):
        session = world.session().connect()
        with pytest.raises(CommsError, match="pending upload"):
            session.send_and_wait_prompt("x", timeout=0.01)

    def test_one_operation_at_a_time(self, world):
        session = world.session().connect()
        with session.pending(PendingOperation.HANDSHAKE):
            with pytest.raises(CommsError, match="busy with handshake"):
                with session.pending(PendingOperation.UPLOAD):
                    pass
        assert session.pending_operation is PendingOperation.NONE

    def test_pending_released_on_error(self, world):
        session = world.session().connect()
        with pytest.raises(RuntimeError):
            with session.pending(PendingOperation.UPLOAD):
                raise RuntimeError("boom")
        assert session.pending_operation is PendingOperation.NONE

    def test_disconnect_during_wait(self, world):
        """Disconnecting wakes the waiter, which reports NotConnectedError."""
        world.responders["/dev/ttyUSB0"] = (
            lambda port, data: threading.Timer(0.01, session.disconnect).start()
        )
        session = world.session().connect()
        with session.pending(PendingOperation.UPLOAD):
            with pytest.raises(NotConnectedError):
                session.send_and_wait_prompt("x\n", timeout=2.0)

    def test_reader_failure_raised_to_waiter(self, world):
        session = world.session(config=LinkConfig(max_line_length=4)).connect()
        port = world.last_port("/dev/ttyUSB0")
        port.responder = lambda p, data: p.reader.fail(BufferOverflowError(4, 10))
        with session.pending(PendingOperation.UPLOAD):
            with pytest.raises(BufferOverflowError):
                session.send_and_wait_prompt("x\n", timeout=1.0)

    def test_reader_failure_wrapped(self, world):
        """Non-driver errors from the reader become ConnectionError."""
        session = world.session().connect()
        port = world.last_port("/dev/ttyUSB0")
        port.responder = lambda p, data: p.reader.fail(
            serial.SerialException("device disconnected")
        )
        with session.pending(PendingOperation.UPLOAD):
            with pytest.raises(ConnectionError, match="device disconnected"):
                session.send_and_wait_prompt("x\n", timeout=1.0)

    def test_normal_reader_stop_is_not_an_error(self, world):
        session = world.session().connect()
        session._handle_reader_lost(None)
        assert session._reader_error is None

    def test_overflowing_chunk_fails_reader(self, world):
        """An over-long line raises out of the receive handler."""
        session = world.session(config=LinkConfig(max_line_length=4)).connect()
        port = world.last_port("/dev/ttyUSB0")
        with pytest.raises(BufferOverflowError):
            port.reader.protocol.data_received(b"0123456789")
