"""PyVISA transport for the DP832.

This module provides the VISA-based transport used for real instruments. It
wraps the PyVISA library, which is imported lazily on :meth:`VisaResource.open`
so the rest of dp832 (codec, emulator, settings files) imports without a VISA
backend present.

Supported resource string formats include:
- GPIB: ``GPIB0::1::INSTR``
- TCPIP: ``TCPIP::192.168.1.100::INSTR`` (LAN instruments)
- USB: ``USB0::0x1AB1::0x0E11::DP8C000000000::INSTR``
"""

from __future__ import annotations

import logging
from typing import Any

from dp832.errors import InstrumentConnectionError, NotConnectedError, TransportError

logger = logging.getLogger(__name__)


class VisaResource:
    """SCPI transport backed by PyVISA.

    Implements the :class:`dp832.transport.ScpiTransport` protocol. The
    resource manager and resource are created together on :meth:`open` and
    released together on :meth:`close`.

    Attributes:
        resource_string: The VISA resource address string.
        is_open: Whether the resource is currently open.

    Args:
        resource_string: VISA resource address.
        timeout_ms: I/O timeout in milliseconds (applied on open).
        read_termination: Character(s) that terminate read operations.
        write_termination: Character(s) appended to write operations.

    Example:
        >>> resource = VisaResource("TCPIP::192.168.1.100::INSTR")
        >>> resource.open()
        >>> resource.write("*IDN?")
        >>> print(resource.read())
        >>> resource.close()
    """

    def __init__(
        self,
        resource_string: str,
        *,
        timeout_ms: int = 5000,
        read_termination: str = "\n",
        write_termination: str = "\n",
    ) -> None:
        self._resource_string = resource_string
        self._timeout_ms = timeout_ms
        self._read_termination = read_termination
        self._write_termination = write_termination
        self._rm: Any = None
        self._resource: Any = None

    # -- Properties ----------------------------------------------------------

    @property
    def resource_string(self) -> str:
        """The VISA resource string."""
        return self._resource_string

    @property
    def is_open(self) -> bool:
        """Return True if the resource is currently open."""
        return self._resource is not None

    # -- Lifecycle -----------------------------------------------------------

    def open(self) -> None:
        """Open the VISA resource.

        Lazily imports ``pyvisa`` and creates a ``ResourceManager``. Calling
        this on an open resource is a no-op. On failure nothing is left
        open.

        Raises:
            InstrumentConnectionError: If ``pyvisa`` is not installed or the
                resource cannot be opened.
        """
        if self._resource is not None:
            return

        try:
            import pyvisa  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
        except ImportError as exc:
            raise InstrumentConnectionError(
                "pyvisa library is not installed. Install with: pip install pyvisa"
            ) from exc

        try:
            self._rm = pyvisa.ResourceManager()
            self._resource = self._rm.open_resource(
                self._resource_string,
                read_termination=self._read_termination,
                write_termination=self._write_termination,
            )
            self._resource.timeout = self._timeout_ms
        except Exception as exc:
            self.close()
            raise InstrumentConnectionError(
                f"Failed to open VISA resource {self._resource_string!r}: {exc}"
            ) from exc
        logger.debug("Opened VISA resource %s", self._resource_string)

    def close(self) -> None:
        """Close the VISA resource and resource manager.

        Safe to call multiple times.
        """
        if self._resource is not None:
            try:
                self._resource.close()
            except Exception:  # pylint: disable=broad-except
                logger.warning("Error closing VISA resource %s", self._resource_string)
            self._resource = None
        if self._rm is not None:
            try:
                self._rm.close()
            except Exception:  # pylint: disable=broad-except
                logger.warning("Error closing VISA resource manager")
            self._rm = None

    # -- Transport interface -------------------------------------------------

    def write(self, message: str) -> None:
        """Send a message to the instrument.

        Args:
            message: The SCPI command or query string.

        Raises:
            NotConnectedError: If the resource is not open.
            TransportError: If the write fails.
        """
        if self._resource is None:
            raise NotConnectedError("VISA resource is not open")
        try:
            self._resource.write(message)
        except Exception as exc:
            raise TransportError(f"Write of {message!r} failed: {exc}") from exc

    def read(self) -> str:
        """Read a response from the instrument.

        Returns:
            The response string.

        Raises:
            NotConnectedError: If the resource is not open.
            TransportError: If the read fails or times out.
        """
        if self._resource is None:
            raise NotConnectedError("VISA resource is not open")
        try:
            result: str = self._resource.read()
        except Exception as exc:
            raise TransportError(f"Read failed: {exc}") from exc
        return result
