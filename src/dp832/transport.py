"""SCPI transport protocol definition.

This module defines the :class:`ScpiTransport` protocol, the black-box
line channel that :class:`dp832.session.InstrumentSession` talks through.

Implementations include:
- :class:`dp832.visa.VisaResource`: PyVISA-backed transport for real hardware
- :class:`dp832.emulator.Dp832Emulator`: in-process emulator for tests
"""

from __future__ import annotations

from typing import Protocol


class ScpiTransport(Protocol):
    """Protocol for SCPI message transport.

    Implementations provide the physical layer for sending lines to and
    receiving response lines from an instrument. The session calls
    :meth:`open` once when connecting and :meth:`close` once when
    disconnecting.

    Implementations report failures by raising
    :class:`dp832.errors.InstrumentConnectionError` from :meth:`open` and
    :class:`dp832.errors.TransportError` from :meth:`write`/:meth:`read`.
    Any other exception escaping :meth:`write`/:meth:`read` is wrapped in a
    :class:`~dp832.errors.TransportError` by the session.

    Example:
        >>> class MyTransport:
        ...     def open(self) -> None:
        ...         pass
        ...     def write(self, message: str) -> None:
        ...         pass
        ...     def read(self) -> str:
        ...         return "response"
        ...     def close(self) -> None:
        ...         pass
        ...
        >>> transport: ScpiTransport = MyTransport()
    """

    def open(self) -> None:
        """Open the underlying channel."""
        ...

    def write(self, message: str) -> None:
        """Send one line to the instrument.

        Args:
            message: The SCPI command or query, without terminator.
        """
        ...

    def read(self) -> str:
        """Read one response line from the instrument.

        Returns:
            The response string.
        """
        ...

    def close(self) -> None:
        """Close the transport and release resources."""
        ...
