"""Tests for InstrumentSession using a mock transport."""

from __future__ import annotations

from collections import deque
from typing import Any

import pytest

from dp832.errors import (
    ErrorQueueOverflowError,
    InstrumentConnectionError,
    NotConnectedError,
    TransportError,
)
from dp832.session import InstrumentIdentity, InstrumentSession, parse_idn_response

# ---------------------------------------------------------------------------
# Mock transport
# ---------------------------------------------------------------------------


class MockTransport:
    """In-memory transport that replays pre-loaded responses.

    A response that is an exception instance is raised from ``read``.
    """

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses: deque[Any] = deque(responses or [])
        self.written: list[str] = []
        self.opened: int = 0
        self.closed: int = 0
        self.open_error: Exception | None = None
        self.write_error: Exception | None = None

    def open(self) -> None:
        self.opened += 1
        if self.open_error is not None:
            raise self.open_error

    def write(self, message: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(message)

    def read(self) -> str:
        response = self.responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed += 1


def _make_session(transport: MockTransport, **kwargs: Any) -> InstrumentSession:
    """Create a session whose factory always returns *transport*."""
    return InstrumentSession(
        "TCPIP::192.168.1.136::INSTR",
        transport_factory=lambda _address, **_kw: transport,
        **kwargs,
    )


def _no_error() -> str:
    """Standard 'no error' response."""
    return '0,"No error"'


# ---------------------------------------------------------------------------
# parse_idn_response
# ---------------------------------------------------------------------------


class TestParseIdnResponse:
    """Tests for parse_idn_response."""

    def test_four_fields(self) -> None:
        identity = parse_idn_response("RIGOL TECHNOLOGIES,DP832,DP8C1234,00.01.16")
        assert identity == InstrumentIdentity(
            manufacturer="RIGOL TECHNOLOGIES",
            model="DP832",
            serial="DP8C1234",
            firmware="00.01.16",
        )

    def test_fields_are_trimmed(self) -> None:
        identity = parse_idn_response(" RIGOL , DP832 , SN , 1.0 ")
        assert identity.model == "DP832"
        assert identity.firmware == "1.0"

    def test_extra_fields_join_firmware(self) -> None:
        identity = parse_idn_response("RIGOL,DP832,SN,1.0,build7")
        assert identity.firmware == "1.0,build7"

    def test_too_few_fields(self) -> None:
        with pytest.raises(ValueError, match="at least 4"):
            parse_idn_response("RIGOL,DP832")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Tests for connect/disconnect/close."""

    def test_starts_disconnected(self) -> None:
        session = _make_session(MockTransport())
        assert not session.is_connected
        assert session.address == "TCPIP::192.168.1.136::INSTR"

    def test_connect_opens_transport(self) -> None:
        transport = MockTransport()
        session = _make_session(transport)
        session.connect()
        assert session.is_connected
        assert transport.opened == 1

    def test_connect_passes_address_and_timeout(self) -> None:
        calls: list[tuple[str, dict[str, Any]]] = []
        transport = MockTransport()

        def factory(address: str, **kwargs: Any) -> MockTransport:
            calls.append((address, kwargs))
            return transport

        session = InstrumentSession("GPIB0::5::INSTR", timeout_ms=2500, transport_factory=factory)
        session.connect()
        assert calls == [("GPIB0::5::INSTR", {"timeout_ms": 2500})]

    def test_connect_idempotent(self) -> None:
        transport = MockTransport()
        session = _make_session(transport)
        session.connect()
        session.connect()
        assert transport.opened == 1

    def test_open_failure_raises_connection_error(self) -> None:
        transport = MockTransport()
        transport.open_error = OSError("VI_ERROR_RSRC_NFOUND")
        session = _make_session(transport)
        with pytest.raises(InstrumentConnectionError, match="VI_ERROR_RSRC_NFOUND"):
            session.connect()
        assert not session.is_connected
        assert transport.closed == 1

    def test_open_connection_error_is_not_rewrapped(self) -> None:
        transport = MockTransport()
        original = InstrumentConnectionError("busy")
        transport.open_error = original
        session = _make_session(transport)
        with pytest.raises(InstrumentConnectionError) as exc_info:
            session.connect()
        assert exc_info.value is original

    def test_factory_failure_raises_connection_error(self) -> None:
        def factory(_address: str, **_kw: Any) -> MockTransport:
            raise ValueError("bad resource string")

        session = InstrumentSession("junk", transport_factory=factory)
        with pytest.raises(InstrumentConnectionError):
            session.connect()
        assert not session.is_connected

    def test_disconnect_closes_once(self) -> None:
        transport = MockTransport()
        session = _make_session(transport)
        session.connect()
        session.disconnect()
        session.disconnect()
        session.close()
        assert transport.closed == 1
        assert not session.is_connected

    def test_disconnect_when_never_connected(self) -> None:
        session = _make_session(MockTransport())
        session.disconnect()
        assert not session.is_connected

    def test_reconnect_after_close(self) -> None:
        transport = MockTransport()
        session = _make_session(transport)
        session.connect()
        session.close()
        session.connect()
        assert session.is_connected
        assert transport.opened == 2

    def test_context_manager(self) -> None:
        transport = MockTransport(["RIGOL,DP832,SN,1.0"])
        with _make_session(transport) as session:
            assert session.is_connected
            session.get_identification()
        assert transport.closed == 1
        assert not session.is_connected

    def test_close_error_is_logged_not_raised(self) -> None:
        transport = MockTransport()

        def failing_close() -> None:
            raise OSError("already gone")

        transport.close = failing_close  # type: ignore[method-assign]
        session = _make_session(transport)
        session.connect()
        session.close()
        assert not session.is_connected

    def test_max_error_reads_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            _make_session(MockTransport(), max_error_reads=0)


# ---------------------------------------------------------------------------
# send_command / send_query
# ---------------------------------------------------------------------------


class TestCommandsAndQueries:
    """Tests for the core command/query primitives."""

    def test_command_before_connect(self) -> None:
        session = _make_session(MockTransport())
        with pytest.raises(NotConnectedError):
            session.send_command("*RST")

    def test_query_before_connect(self) -> None:
        session = _make_session(MockTransport())
        with pytest.raises(NotConnectedError):
            session.send_query("*IDN?")

    def test_command_writes_line(self) -> None:
        transport = MockTransport()
        session = _make_session(transport)
        session.connect()
        session.send_command(":SOURce1:VOLTage 5.000")
        assert transport.written == [":SOURce1:VOLTage 5.000"]

    def test_query_strips_trailing_whitespace(self) -> None:
        transport = MockTransport(["5.000\r\n"])
        session = _make_session(transport)
        session.connect()
        assert session.send_query(":MEASure:VOLTage? CH1") == "5.000"
        assert transport.written == [":MEASure:VOLTage? CH1"]

    def test_read_timeout_becomes_transport_error(self) -> None:
        transport = MockTransport([TimeoutError("VI_ERROR_TMO")])
        session = _make_session(transport)
        session.connect()
        with pytest.raises(TransportError, match="VI_ERROR_TMO"):
            session.send_query(":MEASure:VOLTage? CH1")

    def test_transport_error_passes_through(self) -> None:
        original = TransportError("link down")
        transport = MockTransport([original])
        session = _make_session(transport)
        session.connect()
        with pytest.raises(TransportError) as exc_info:
            session.send_query("*IDN?")
        assert exc_info.value is original

    def test_write_failure_becomes_transport_error(self) -> None:
        transport = MockTransport()
        transport.write_error = BrokenPipeError("socket closed")
        session = _make_session(transport)
        session.connect()
        with pytest.raises(TransportError):
            session.send_command("*RST")

    def test_session_usable_after_transport_error(self) -> None:
        transport = MockTransport([TransportError("timeout"), "RIGOL,DP832,SN,1.0"])
        session = _make_session(transport)
        session.connect()
        with pytest.raises(TransportError):
            session.send_query("*IDN?")
        assert session.is_connected
        assert session.send_query("*IDN?") == "RIGOL,DP832,SN,1.0"


# ---------------------------------------------------------------------------
# Identification
# ---------------------------------------------------------------------------


class TestIdentification:
    """Tests for *IDN? helpers."""

    def test_get_identification(self) -> None:
        transport = MockTransport(["RIGOL TECHNOLOGIES,DP832,DP8C1234,00.01.16\n"])
        session = _make_session(transport)
        session.connect()
        assert session.get_identification() == "RIGOL TECHNOLOGIES,DP832,DP8C1234,00.01.16"
        assert transport.written == ["*IDN?"]

    def test_get_identity(self) -> None:
        transport = MockTransport(["RIGOL TECHNOLOGIES,DP832,DP8C1234,00.01.16"])
        session = _make_session(transport)
        session.connect()
        identity = session.get_identity()
        assert identity.manufacturer == "RIGOL TECHNOLOGIES"
        assert identity.serial == "DP8C1234"


# ---------------------------------------------------------------------------
# get_errors
# ---------------------------------------------------------------------------


class TestGetErrors:
    """Tests for draining the error queue."""

    def test_empty_queue(self) -> None:
        transport = MockTransport([_no_error()])
        session = _make_session(transport)
        session.connect()
        assert session.get_errors() == []
        assert transport.written == [":SYSTem:ERRor?"]

    def test_collects_until_sentinel(self) -> None:
        transport = MockTransport(
            ['-113,"Undefined header"', '-222,"Data out of range"', _no_error(), "unread"]
        )
        session = _make_session(transport)
        session.connect()
        assert session.get_errors() == ['-113,"Undefined header"', '-222,"Data out of range"']
        assert len(transport.written) == 3

    def test_leading_whitespace_ignored(self) -> None:
        transport = MockTransport(['  -113,"Undefined header"\n', ' 0,"No error"\n', "unread"])
        session = _make_session(transport, max_error_reads=3)
        session.connect()
        assert session.get_errors() == ['-113,"Undefined header"']
        assert len(transport.written) == 2

    def test_overflow_raises(self) -> None:
        transport = MockTransport(['-350,"Queue overflow"'] * 4)
        session = _make_session(transport, max_error_reads=3)
        session.connect()
        with pytest.raises(ErrorQueueOverflowError) as exc_info:
            session.get_errors()
        assert len(exc_info.value.errors) == 3
        assert len(transport.written) == 3

    def test_transport_failure_returns_partial(self) -> None:
        transport = MockTransport(['-113,"Undefined header"', TransportError("timeout")])
        session = _make_session(transport)
        session.connect()
        assert session.get_errors() == ['-113,"Undefined header"']

    def test_before_connect(self) -> None:
        session = _make_session(MockTransport())
        with pytest.raises(NotConnectedError):
            session.get_errors()
