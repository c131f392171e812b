"""Tests for VisaResource with mocked pyvisa module."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import pytest

from dp832.errors import Dp832Error, InstrumentConnectionError, NotConnectedError, TransportError
from dp832.visa import VisaResource


def _make_mock_pyvisa() -> MagicMock:
    """Create a mock pyvisa module with ResourceManager."""
    mock_pyvisa = MagicMock()
    mock_rm = MagicMock()
    mock_resource = MagicMock()
    mock_rm.open_resource.return_value = mock_resource
    mock_pyvisa.ResourceManager.return_value = mock_rm
    return mock_pyvisa


def _open(visa: VisaResource) -> MagicMock:
    """Open *visa* against a mock pyvisa and return the mock resource."""
    mock_pyvisa = _make_mock_pyvisa()
    with patch.dict(sys.modules, {"pyvisa": mock_pyvisa}):
        visa.open()
    return mock_pyvisa.ResourceManager.return_value.open_resource.return_value


# ---------------------------------------------------------------------------
# open / close lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Tests for open/close lifecycle."""

    def test_open_opens_resource(self) -> None:
        mock_pyvisa = _make_mock_pyvisa()
        visa = VisaResource("TCPIP::192.168.1.136::INSTR")
        with patch.dict(sys.modules, {"pyvisa": mock_pyvisa}):
            visa.open()
        assert visa.is_open
        assert visa.resource_string == "TCPIP::192.168.1.136::INSTR"
        mock_pyvisa.ResourceManager.return_value.open_resource.assert_called_once_with(
            "TCPIP::192.168.1.136::INSTR",
            read_termination="\n",
            write_termination="\n",
        )

    def test_open_sets_timeout(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR", timeout_ms=8000)
        resource = _open(visa)
        assert resource.timeout == 8000

    def test_open_idempotent(self) -> None:
        mock_pyvisa = _make_mock_pyvisa()
        visa = VisaResource("GPIB0::1::INSTR")
        with patch.dict(sys.modules, {"pyvisa": mock_pyvisa}):
            visa.open()
            visa.open()
        mock_pyvisa.ResourceManager.assert_called_once()

    def test_missing_pyvisa(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        with patch.dict(sys.modules, {"pyvisa": None}):
            with pytest.raises(InstrumentConnectionError, match="pyvisa"):
                visa.open()
        assert not visa.is_open

    def test_open_failure_releases_resource_manager(self) -> None:
        mock_pyvisa = _make_mock_pyvisa()
        mock_rm = mock_pyvisa.ResourceManager.return_value
        mock_rm.open_resource.side_effect = RuntimeError("VI_ERROR_RSRC_NFOUND")
        visa = VisaResource("TCPIP::10.0.0.99::INSTR")
        with patch.dict(sys.modules, {"pyvisa": mock_pyvisa}):
            with pytest.raises(InstrumentConnectionError, match="10.0.0.99"):
                visa.open()
        assert not visa.is_open
        mock_rm.close.assert_called_once()

    def test_connection_error_is_dp832_error(self) -> None:
        assert issubclass(InstrumentConnectionError, Dp832Error)

    def test_close_releases_everything(self) -> None:
        mock_pyvisa = _make_mock_pyvisa()
        visa = VisaResource("GPIB0::1::INSTR")
        with patch.dict(sys.modules, {"pyvisa": mock_pyvisa}):
            visa.open()
        visa.close()
        assert not visa.is_open
        mock_rm = mock_pyvisa.ResourceManager.return_value
        mock_rm.open_resource.return_value.close.assert_called_once()
        mock_rm.close.assert_called_once()

    def test_close_idempotent(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        _open(visa)
        visa.close()
        visa.close()
        assert not visa.is_open

    def test_close_swallows_resource_errors(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        resource = _open(visa)
        resource.close.side_effect = RuntimeError("bus error")
        visa.close()
        assert not visa.is_open


# ---------------------------------------------------------------------------
# write / read
# ---------------------------------------------------------------------------


class TestReadWrite:
    """Tests for the transport interface."""

    def test_write(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        resource = _open(visa)
        visa.write("*RST")
        resource.write.assert_called_once_with("*RST")

    def test_read(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        resource = _open(visa)
        resource.read.return_value = "5.000"
        assert visa.read() == "5.000"

    def test_write_when_closed(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        with pytest.raises(NotConnectedError):
            visa.write("*RST")

    def test_read_when_closed(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        with pytest.raises(NotConnectedError):
            visa.read()

    def test_read_timeout(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        resource = _open(visa)
        resource.read.side_effect = Exception("VI_ERROR_TMO")
        with pytest.raises(TransportError, match="VI_ERROR_TMO"):
            visa.read()

    def test_write_failure(self) -> None:
        visa = VisaResource("GPIB0::1::INSTR")
        resource = _open(visa)
        resource.write.side_effect = OSError("bus error")
        with pytest.raises(TransportError):
            visa.write("*RST")
