"""Latched OVP/OCP trip detection and clearing.

When a channel's measured voltage (OVP) or current (OCP) exceeds its
protection threshold while the output is on, the instrument latches a trip
and forces the output off. The latch persists across ``*RST`` and is only
released by the channel-scoped clear commands::

    :OUTPut:OVP:CLEar CH<n>
    :OUTPut:OCP:CLEar CH<n>

Trip state is read exclusively from the dedicated trip-status queries. An
output that is off is not evidence of a trip.

Clearing a trip does not re-enable the output; callers do that explicitly
afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from dp832.codec import channel_name, is_valid_channel, parse_bool
from dp832.errors import TransportError
from dp832.status import ProtectionState, ocp_trip_query, ovp_trip_query

if TYPE_CHECKING:
    from dp832.session import InstrumentSession

logger = logging.getLogger(__name__)


class ProtectionKind(Enum):
    """Protection features that can trip."""

    OVP = "OVP"
    OCP = "OCP"

    def trip_query(self, channel: int) -> str:
        """Return the trip-status query for *channel*."""
        if self is ProtectionKind.OVP:
            return ovp_trip_query(channel)
        return ocp_trip_query(channel)

    def clear_command(self, channel: int) -> str:
        """Return the trip-clear command for *channel*."""
        return f":OUTPut:{self.value}:CLEar {channel_name(channel)}"


@dataclass(frozen=True)
class TripStatus:
    """Trip flags of one channel.

    Attributes:
        ovp: True if an OVP trip is latched.
        ocp: True if an OCP trip is latched.
    """

    ovp: bool
    ocp: bool

    @property
    def any(self) -> bool:
        """True if either protection is tripped."""
        return self.ovp or self.ocp


@dataclass(frozen=True)
class TripClearResult:
    """Outcome of :meth:`ProtectionTripController.clear_trips`.

    A kind that was not tripped counts as cleared.

    Attributes:
        channel: Channel number.
        ovp_was_tripped: Whether OVP was tripped before clearing.
        ovp_cleared: Whether the OVP clear succeeded (or was not needed).
        ocp_was_tripped: Whether OCP was tripped before clearing.
        ocp_cleared: Whether the OCP clear succeeded (or was not needed).
    """

    channel: int
    ovp_was_tripped: bool
    ovp_cleared: bool
    ocp_was_tripped: bool
    ocp_cleared: bool

    @property
    def success(self) -> bool:
        """True if every attempted clear succeeded."""
        return self.ovp_cleared and self.ocp_cleared


class ProtectionTripController:
    """Checks and clears protection trips on a connected session.

    Args:
        session: The instrument session to use.
    """

    def __init__(self, session: InstrumentSession) -> None:
        self._session = session

    def trip_state(self, channel: int, kind: ProtectionKind) -> ProtectionState:
        """Read the trip state of one protection kind.

        Args:
            channel: Channel number (1-3).
            kind: Which protection to read.

        Returns:
            ``UNKNOWN`` if the query failed, otherwise ``TRIPPED`` or
            ``NORMAL``.

        Raises:
            NotConnectedError: If the session is not connected.
        """
        _check_channel(channel)
        query = kind.trip_query(channel)
        try:
            response = self._session.send_query(query)
        except TransportError as exc:
            logger.warning("CH%d %s trip query failed: %s", channel, kind.value, exc)
            return ProtectionState.UNKNOWN
        return ProtectionState.from_flag(parse_bool(response))

    def check_trips(self, channel: int) -> TripStatus:
        """Read both trip flags of a channel.

        The two queries are independent. A failed query reads as "not
        tripped" and does not prevent the other query.

        Args:
            channel: Channel number (1-3).

        Raises:
            NotConnectedError: If the session is not connected.
        """
        return TripStatus(
            ovp=self.trip_state(channel, ProtectionKind.OVP) is ProtectionState.TRIPPED,
            ocp=self.trip_state(channel, ProtectionKind.OCP) is ProtectionState.TRIPPED,
        )

    def clear_trips(self, channel: int) -> TripClearResult:
        """Clear every latched trip on a channel.

        Only kinds currently reported as tripped are cleared. A failure to
        clear one kind does not stop the attempt on the other. The output
        stays off.

        Args:
            channel: Channel number (1-3).

        Raises:
            NotConnectedError: If the session is not connected.
        """
        status = self.check_trips(channel)
        ovp_cleared = self._clear(channel, ProtectionKind.OVP) if status.ovp else True
        ocp_cleared = self._clear(channel, ProtectionKind.OCP) if status.ocp else True
        return TripClearResult(
            channel=channel,
            ovp_was_tripped=status.ovp,
            ovp_cleared=ovp_cleared,
            ocp_was_tripped=status.ocp,
            ocp_cleared=ocp_cleared,
        )

    def _clear(self, channel: int, kind: ProtectionKind) -> bool:
        try:
            self._session.send_command(kind.clear_command(channel))
        except TransportError as exc:
            logger.error("Failed to clear CH%d %s trip: %s", channel, kind.value, exc)
            return False
        logger.info("Cleared CH%d %s trip", channel, kind.value)
        return True


def _check_channel(channel: int) -> None:
    if not is_valid_channel(channel):
        raise ValueError(f"Channel {channel} out of range (1-3)")
