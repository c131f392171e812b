"""Instrument session over a SCPI transport.

This module provides :class:`InstrumentSession`, which owns the open bus
connection to one instrument and exposes the synchronous command/query
primitives every other dp832 component is built on.

The wire protocol is half-duplex: each query's response is read before the
next line is written. The session holds the transport exclusively from
:meth:`~InstrumentSession.connect` to :meth:`~InstrumentSession.disconnect`.

Typical usage::

    from dp832 import InstrumentSession

    with InstrumentSession("TCPIP::192.168.1.100::INSTR") as session:
        print(session.get_identification())
        session.send_command(":SOURce1:VOLTage 5.000")
        print(session.send_query(":MEASure:VOLTage? CH1"))
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from dp832.errors import (
    Dp832Error,
    ErrorQueueOverflowError,
    InstrumentConnectionError,
    NotConnectedError,
    TransportError,
)
from dp832.transport import ScpiTransport
from dp832.visa import VisaResource

logger = logging.getLogger(__name__)

IDENTIFY_QUERY = "*IDN?"
ERROR_QUERY = ":SYSTem:ERRor?"
NO_ERROR_PREFIX = "0,"
DEFAULT_MAX_ERROR_READS = 32

TransportFactory = Callable[..., ScpiTransport]
"""Callable ``(address, *, timeout_ms) -> ScpiTransport``."""


@dataclass(frozen=True)
class InstrumentIdentity:
    """Instrument identification parsed from ``*IDN?``.

    Attributes:
        manufacturer: Manufacturer name (e.g. "RIGOL TECHNOLOGIES").
        model: Model name (e.g. "DP832").
        serial: Serial number.
        firmware: Firmware version string.
    """

    manufacturer: str
    model: str
    serial: str
    firmware: str


def parse_idn_response(response: str) -> InstrumentIdentity:
    """Parse a ``*IDN?`` response into an :class:`InstrumentIdentity`.

    The response format is four comma-separated fields::

        manufacturer,model,serial_number,firmware_version

    Extra fields are joined into the firmware string.

    Args:
        response: The raw ``*IDN?`` response string.

    Returns:
        Parsed identity.

    Raises:
        ValueError: If the response has fewer than four fields.
    """
    parts = [p.strip() for p in response.split(",")]
    if len(parts) < 4:
        raise ValueError(
            f"Expected at least 4 comma-separated fields in *IDN? response, "
            f"got {len(parts)}: {response!r}"
        )
    return InstrumentIdentity(
        manufacturer=parts[0],
        model=parts[1],
        serial=parts[2],
        firmware=",".join(parts[3:]),
    )


class InstrumentSession:
    """Owner of one open instrument connection.

    The session is created closed. :meth:`connect` builds a transport from
    ``transport_factory`` and opens it; :meth:`disconnect` closes it. Using
    the session as a context manager brackets both.

    Args:
        address: Fully qualified VISA resource string.
        timeout_ms: I/O timeout handed to the transport.
        transport_factory: Builds the transport for *address*. Defaults to
            :class:`~dp832.visa.VisaResource`.
        max_error_reads: Upper bound on ``:SYSTem:ERRor?`` reads per
            :meth:`get_errors` call.

    Example:
        >>> session = InstrumentSession("GPIB0::1::INSTR")
        >>> session.connect()
        >>> session.send_query("*IDN?")
        'RIGOL TECHNOLOGIES,DP832,DP8C000000000,00.01.16'
        >>> session.disconnect()
    """

    def __init__(
        self,
        address: str,
        *,
        timeout_ms: int = 5000,
        transport_factory: TransportFactory = VisaResource,
        max_error_reads: int = DEFAULT_MAX_ERROR_READS,
    ) -> None:
        if max_error_reads < 1:
            raise ValueError("max_error_reads must be >= 1")
        self._address = address
        self._timeout_ms = timeout_ms
        self._transport_factory = transport_factory
        self._max_error_reads = max_error_reads
        self._transport: ScpiTransport | None = None
        self._lock = threading.Lock()

    # -- Properties ----------------------------------------------------------

    @property
    def address(self) -> str:
        """The resource string this session connects to."""
        return self._address

    @property
    def is_connected(self) -> bool:
        """Return True while a transport is open."""
        return self._transport is not None

    # -- Lifecycle -----------------------------------------------------------

    def connect(self) -> None:
        """Open the session.

        Does nothing if already connected.

        Raises:
            InstrumentConnectionError: If the transport cannot be created or
                opened. No partially opened transport is kept.
        """
        if self._transport is not None:
            return

        transport: ScpiTransport | None = None
        try:
            transport = self._transport_factory(self._address, timeout_ms=self._timeout_ms)
            transport.open()
        except Exception as exc:
            if transport is not None:
                self._close_transport(transport)
            if isinstance(exc, InstrumentConnectionError):
                raise
            raise InstrumentConnectionError(
                f"Could not connect to {self._address!r}: {exc}"
            ) from exc

        self._transport = transport
        logger.info("Connected to %s", self._address)

    def disconnect(self) -> None:
        """Close the session and release the transport.

        Safe to call when already disconnected.
        """
        transport, self._transport = self._transport, None
        if transport is None:
            return
        self._close_transport(transport)
        logger.info("Disconnected from %s", self._address)

    def close(self) -> None:
        """Dispose of the session.

        Equivalent to :meth:`disconnect`; the transport is released exactly
        once no matter how often this is called.
        """
        self.disconnect()

    def __enter__(self) -> InstrumentSession:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Core operations -----------------------------------------------------

    def send_command(self, text: str) -> None:
        """Write a command line; no response is expected.

        Args:
            text: The SCPI command (e.g. ``":OUTPut CH1,ON"``).

        Raises:
            NotConnectedError: If called before :meth:`connect`.
            TransportError: If the write fails.
        """
        with self._lock:
            transport = self._require_transport()
            self._write(transport, text)
        logger.debug("%s", text)

    def send_query(self, text: str) -> str:
        """Write a query line and read one response line.

        Args:
            text: The SCPI query (e.g. ``":MEASure:VOLTage? CH1"``).

        Returns:
            The response with trailing whitespace and newline removed.

        Raises:
            NotConnectedError: If called before :meth:`connect`.
            TransportError: If the write or read fails or times out.
        """
        with self._lock:
            transport = self._require_transport()
            self._write(transport, text)
            try:
                response = transport.read()
            except Dp832Error:
                raise
            except Exception as exc:
                raise TransportError(f"Read after {text!r} failed: {exc}") from exc
        response = response.rstrip()
        logger.debug("%s -> %r", text, response)
        return response

    # -- Convenience ---------------------------------------------------------

    def get_identification(self) -> str:
        """Query the raw identification string (``*IDN?``)."""
        return self.send_query(IDENTIFY_QUERY)

    def get_identity(self) -> InstrumentIdentity:
        """Query and parse the instrument identification.

        Raises:
            ValueError: If the response has fewer than four fields.
        """
        return parse_idn_response(self.get_identification())

    def get_errors(self) -> list[str]:
        """Drain the instrument error queue.

        Repeatedly queries ``:SYSTem:ERRor?`` until a response starting
        with ``"0,"`` arrives. A transport failure part-way through ends the
        drain and the entries read so far are returned.

        Returns:
            Every non-sentinel entry, in the order received.

        Raises:
            NotConnectedError: If called before :meth:`connect`.
            ErrorQueueOverflowError: If the sentinel is not seen within
                ``max_error_reads`` reads.
        """
        errors: list[str] = []
        for _ in range(self._max_error_reads):
            try:
                response = self.send_query(ERROR_QUERY)
            except TransportError as exc:
                logger.warning(
                    "Error queue drain on %s stopped after %d entries: %s",
                    self._address,
                    len(errors),
                    exc,
                )
                return errors
            entry = response.lstrip()
            if entry.startswith(NO_ERROR_PREFIX):
                return errors
            errors.append(entry)
        raise ErrorQueueOverflowError(errors, self._max_error_reads)

    # -- Private helpers -----------------------------------------------------

    def _require_transport(self) -> ScpiTransport:
        if self._transport is None:
            raise NotConnectedError(f"Not connected to {self._address!r}")
        return self._transport

    @staticmethod
    def _write(transport: ScpiTransport, text: str) -> None:
        try:
            transport.write(text)
        except Dp832Error:
            raise
        except Exception as exc:
            raise TransportError(f"Write of {text!r} failed: {exc}") from exc

    def _close_transport(self, transport: ScpiTransport) -> None:
        try:
            transport.close()
        except Exception:  # pylint: disable=broad-except
            logger.warning("Error closing transport for %s", self._address, exc_info=True)
