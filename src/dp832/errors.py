"""Exception types for dp832.

All dp832 exceptions inherit from :class:`Dp832Error`, allowing callers to
catch every library-specific failure with a single except clause.

Exception hierarchy:
    Dp832Error (base)
    +-- InstrumentConnectionError: Session could not be opened
    +-- NotConnectedError: Operation attempted before ``connect()``
    +-- TransportError: Write/read/timeout failure on an open session
    +-- ParseError: Response text did not have the expected shape
    +-- ErrorQueueOverflowError: Error queue drain did not terminate

Batch operations (status snapshots, trip checks) turn :class:`TransportError`
and :class:`ParseError` into per-field invalid markers. The other types are
session-level failures and always propagate.
"""


class Dp832Error(Exception):
    """Base exception for all dp832 errors."""


class InstrumentConnectionError(Dp832Error):
    """Raised when the bus layer cannot open the instrument address.

    Common causes are an unreachable host, an invalid resource string, a
    device held by another session, or a missing VISA backend.
    """


class NotConnectedError(Dp832Error):
    """Raised when a command or query is issued before ``connect()``.

    This is a programming error rather than an instrument condition.
    """


class TransportError(Dp832Error):
    """Raised when a write or read fails on an open session.

    Includes I/O timeouts reported by the transport.
    """


class ParseError(Dp832Error):
    """Raised when an instrument response cannot be interpreted.

    Attributes:
        query: The query that produced the response.
        response: The raw response text.
    """

    def __init__(self, query: str, response: str) -> None:
        """Initialize the parse error.

        Args:
            query: The query that produced the response.
            response: The raw response text.
        """
        self.query = query
        self.response = response
        super().__init__(f"Unexpected response to {query!r}: {response!r}")


class ErrorQueueOverflowError(Dp832Error):
    """Raised when the error queue never reports the "no error" sentinel.

    Attributes:
        errors: Entries read before giving up.
    """

    def __init__(self, errors: list[str], limit: int) -> None:
        """Initialize the overflow error.

        Args:
            errors: Entries read before giving up.
            limit: The read bound that was exceeded.
        """
        self.errors = errors
        super().__init__(
            f"Error queue not drained after {limit} reads; last entry: "
            f"{errors[-1] if errors else '<none>'!r}"
        )
