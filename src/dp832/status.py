"""Multi-channel status snapshots with per-field error isolation.

A snapshot is a point-in-time read of every channel and the system
settings. Individual query failures never discard the whole snapshot:

* The ten "dominant" queries of a channel (setpoints, measurements,
  protection levels/states, output state) form one unit. If any of them
  fails, every dominant field of that channel is marked invalid together.
* The two trip-status queries of a channel are issued after the dominant
  block regardless of its outcome, each in its own failure boundary.
* Each system-wide setting is queried and isolated on its own.

Only :class:`~dp832.errors.TransportError` and
:class:`~dp832.errors.ParseError` are absorbed. Session-level failures such
as :class:`~dp832.errors.NotConnectedError` propagate.

Example:
    >>> aggregator = StatusAggregator(session)
    >>> channels, system = aggregator.snapshot()
    >>> for ch in channels:
    ...     if ch.channel_error:
    ...         print(f"CH{ch.channel}: error")
    ...     elif ch.any_tripped:
    ...         print(f"CH{ch.channel}: protection tripped")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from dp832.codec import CHANNELS, channel_name, is_valid_channel, parse_bool, parse_float
from dp832.errors import ParseError, TransportError

if TYPE_CHECKING:
    from dp832.session import InstrumentSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FIELD_ERRORS = (TransportError, ParseError)


class ProtectionState(Enum):
    """Trip state of one protection kind on one channel."""

    NORMAL = "normal"
    TRIPPED = "tripped"
    UNKNOWN = "unknown"

    @classmethod
    def from_flag(cls, tripped: bool) -> ProtectionState:
        """Map a trip-status flag to a state."""
        return cls.TRIPPED if tripped else cls.NORMAL


@dataclass(frozen=True)
class Reading(Generic[T]):
    """One field of a snapshot together with its validity.

    Attributes:
        value: The parsed value, or the type's default when invalid.
        valid: Whether the value was read successfully.
        error: Failure description when invalid.
    """

    value: T
    valid: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, default: T, error: str) -> Reading[T]:
        """Build an invalid reading carrying *default*."""
        return cls(value=default, valid=False, error=error)


@dataclass(frozen=True)
class ChannelSnapshot:
    """Point-in-time state of one output channel.

    Attributes:
        channel: Channel number (1-3).
        voltage_set: Voltage setpoint in volts.
        voltage_measured: Measured output voltage in volts.
        current_set: Current limit in amps.
        current_measured: Measured output current in amps.
        power_measured: Measured output power in watts.
        ovp_level: Over-voltage protection threshold in volts.
        ovp_enabled: Whether OVP is enabled.
        ocp_level: Over-current protection threshold in amps.
        ocp_enabled: Whether OCP is enabled.
        output_enabled: Whether the output is on.
        ovp_trip: Latched OVP trip state.
        ocp_trip: Latched OCP trip state.
    """

    channel: int
    voltage_set: Reading[float]
    voltage_measured: Reading[float]
    current_set: Reading[float]
    current_measured: Reading[float]
    power_measured: Reading[float]
    ovp_level: Reading[float]
    ovp_enabled: Reading[bool]
    ocp_level: Reading[float]
    ocp_enabled: Reading[bool]
    output_enabled: Reading[bool]
    ovp_trip: ProtectionState = ProtectionState.UNKNOWN
    ocp_trip: ProtectionState = ProtectionState.UNKNOWN

    @property
    def channel_error(self) -> bool:
        """True when the dominant block of this channel could not be read."""
        return not self.voltage_set.valid

    @property
    def ovp_tripped(self) -> bool:
        """True only when the instrument reported an OVP trip."""
        return self.ovp_trip is ProtectionState.TRIPPED

    @property
    def ocp_tripped(self) -> bool:
        """True only when the instrument reported an OCP trip."""
        return self.ocp_trip is ProtectionState.TRIPPED

    @property
    def any_tripped(self) -> bool:
        """True if either protection is tripped."""
        return self.ovp_tripped or self.ocp_tripped


@dataclass(frozen=True)
class SystemSnapshot:
    """Point-in-time state of the instrument-wide settings.

    Attributes:
        tracking_mode: ``"SYNC"`` or ``"INDE"`` as reported.
        track_ch1: Whether CH1 output tracking is on.
        track_ch2: Whether CH2 output tracking is on.
        otp_enabled: Whether over-temperature protection is on.
        beeper_enabled: Whether the beeper is on.
        brightness: Display brightness in percent (0-100).
        screen_saver_enabled: Whether the screen saver is on.
    """

    tracking_mode: Reading[str]
    track_ch1: Reading[bool]
    track_ch2: Reading[bool]
    otp_enabled: Reading[bool]
    beeper_enabled: Reading[bool]
    brightness: Reading[int]
    screen_saver_enabled: Reading[bool]


# -- Query strings ----------------------------------------------------------


def ovp_trip_query(channel: int) -> str:
    """Return the OVP trip-status query for *channel*."""
    return f":SOURce{channel}:VOLTage:PROTection:TRIP?"


def ocp_trip_query(channel: int) -> str:
    """Return the OCP trip-status query for *channel*."""
    return f":SOURce{channel}:CURRent:PROTection:TRIP?"


def _channel_queries(channel: int) -> tuple[str, ...]:
    """The dominant queries of a channel, in the order they are issued."""
    name = channel_name(channel)
    return (
        f":SOURce{channel}:VOLTage?",
        f":MEASure:VOLTage? {name}",
        f":SOURce{channel}:CURRent?",
        f":MEASure:CURRent? {name}",
        f":MEASure:POWEr? {name}",
        f":SOURce{channel}:VOLTage:PROTection?",
        f":SOURce{channel}:VOLTage:PROTection:STATe?",
        f":SOURce{channel}:CURRent:PROTection?",
        f":SOURce{channel}:CURRent:PROTection:STATe?",
        f":OUTPut? {name}",
    )


TRACKING_MODE_QUERY = ":SYSTem:TRACKMode?"
OTP_QUERY = ":SYSTem:OTP?"
BEEPER_QUERY = ":SYSTem:BEEPer?"
BRIGHTNESS_QUERY = ":SYSTem:BRIGhtness?"
SCREEN_SAVER_QUERY = ":SYSTem:SAVer?"


def track_query(channel: int) -> str:
    """Return the output-tracking query for *channel*."""
    return f":OUTPut:TRACk? {channel_name(channel)}"


class StatusAggregator:
    """Builds status snapshots from a connected session.

    Args:
        session: The instrument session to query.
    """

    def __init__(self, session: InstrumentSession) -> None:
        self._session = session

    def snapshot(self) -> tuple[tuple[ChannelSnapshot, ...], SystemSnapshot]:
        """Read every channel and the system settings.

        Returns:
            ``(channels, system)`` where *channels* holds one snapshot per
            channel in channel order.

        Raises:
            NotConnectedError: If the session is not connected.
        """
        channels = tuple(self.channel_snapshot(ch) for ch in CHANNELS)
        return channels, self.system_snapshot()

    def channel_snapshot(self, channel: int) -> ChannelSnapshot:
        """Read one channel.

        Args:
            channel: Channel number (1-3).

        Raises:
            ValueError: If *channel* does not exist.
            NotConnectedError: If the session is not connected.
        """
        if not is_valid_channel(channel):
            raise ValueError(f"Channel {channel} out of range (1-{len(CHANNELS)})")

        try:
            readings = self._read_dominant(channel)
        except _FIELD_ERRORS as exc:
            logger.warning("CH%d status unavailable: %s", channel, exc)
            readings = _failed_dominant(str(exc))

        return ChannelSnapshot(
            channel=channel,
            **readings,
            ovp_trip=self._read_trip(ovp_trip_query(channel)),
            ocp_trip=self._read_trip(ocp_trip_query(channel)),
        )

    def system_snapshot(self) -> SystemSnapshot:
        """Read the instrument-wide settings, isolating each field."""
        return SystemSnapshot(
            tracking_mode=self._read_field(TRACKING_MODE_QUERY, _parse_text, ""),
            track_ch1=self._read_field(track_query(1), _parse_flag, False),
            track_ch2=self._read_field(track_query(2), _parse_flag, False),
            otp_enabled=self._read_field(OTP_QUERY, _parse_flag, False),
            beeper_enabled=self._read_field(BEEPER_QUERY, _parse_flag, False),
            brightness=self._read_field(BRIGHTNESS_QUERY, _parse_brightness, 0),
            screen_saver_enabled=self._read_field(SCREEN_SAVER_QUERY, _parse_flag, False),
        )

    # -- Private helpers -----------------------------------------------------

    def _read_dominant(self, channel: int) -> dict[str, Reading]:
        (
            volt_set_q,
            volt_meas_q,
            curr_set_q,
            curr_meas_q,
            power_q,
            ovp_level_q,
            ovp_state_q,
            ocp_level_q,
            ocp_state_q,
            output_q,
        ) = _channel_queries(channel)
        return {
            "voltage_set": Reading(self._query_float(volt_set_q)),
            "voltage_measured": Reading(self._query_float(volt_meas_q)),
            "current_set": Reading(self._query_float(curr_set_q)),
            "current_measured": Reading(self._query_float(curr_meas_q)),
            "power_measured": Reading(self._query_float(power_q)),
            "ovp_level": Reading(self._query_float(ovp_level_q)),
            "ovp_enabled": Reading(parse_bool(self._session.send_query(ovp_state_q))),
            "ocp_level": Reading(self._query_float(ocp_level_q)),
            "ocp_enabled": Reading(parse_bool(self._session.send_query(ocp_state_q))),
            "output_enabled": Reading(parse_bool(self._session.send_query(output_q))),
        }

    def _query_float(self, query: str) -> float:
        response = self._session.send_query(query)
        value, ok = parse_float(response)
        if not ok:
            raise ParseError(query, response)
        return value

    def _read_trip(self, query: str) -> ProtectionState:
        try:
            return ProtectionState.from_flag(parse_bool(self._session.send_query(query)))
        except TransportError as exc:
            logger.warning("Trip query %s failed: %s", query, exc)
            return ProtectionState.UNKNOWN

    def _read_field(self, query: str, parse: Callable[[str, str], T], default: T) -> Reading[T]:
        try:
            return Reading(parse(query, self._session.send_query(query)))
        except _FIELD_ERRORS as exc:
            logger.warning("System query %s failed: %s", query, exc)
            return Reading.failed(default, str(exc))


def _failed_dominant(error: str) -> dict[str, Reading]:
    return {
        "voltage_set": Reading.failed(0.0, error),
        "voltage_measured": Reading.failed(0.0, error),
        "current_set": Reading.failed(0.0, error),
        "current_measured": Reading.failed(0.0, error),
        "power_measured": Reading.failed(0.0, error),
        "ovp_level": Reading.failed(0.0, error),
        "ovp_enabled": Reading.failed(False, error),
        "ocp_level": Reading.failed(0.0, error),
        "ocp_enabled": Reading.failed(False, error),
        "output_enabled": Reading.failed(False, error),
    }


def _parse_text(query: str, response: str) -> str:
    if not response:
        raise ParseError(query, response)
    return response.upper()


def _parse_brightness(query: str, response: str) -> int:
    value, ok = parse_float(response)
    if not ok or not 0 <= value <= 100:
        raise ParseError(query, response)
    return int(round(value))


def _parse_flag(query: str, response: str) -> bool:
    return parse_bool(response)
