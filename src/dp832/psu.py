"""Rigol DP832 instrument driver.

Wraps an :class:`~dp832.session.InstrumentSession` with typed methods for the
DP832 command set. Arguments are range-checked before anything is written,
numeric arguments are sent with three decimals and booleans as ``ON``/``OFF``.
"""

from __future__ import annotations

import logging

from dp832.address import DEFAULT_ADDRESS, resolve_address
from dp832.codec import (
    TRACKING_CHANNELS,
    TRACKING_MODES,
    channel_name,
    format_bool,
    format_number,
    is_valid_brightness,
    is_valid_channel,
    is_valid_current,
    is_valid_ocp_level,
    is_valid_ovp_level,
    is_valid_voltage,
    max_current,
    max_voltage,
    parse_bool,
    parse_float,
)
from dp832.errors import ParseError
from dp832.protection import ProtectionTripController, TripClearResult, TripStatus
from dp832.session import InstrumentIdentity, InstrumentSession
from dp832.status import ChannelSnapshot, StatusAggregator, SystemSnapshot

logger = logging.getLogger(__name__)


class Dp832:
    """High-level driver for the Rigol DP832 triple-output supply.

    Args:
        session: A connected :class:`InstrumentSession`.
    """

    def __init__(self, session: InstrumentSession) -> None:
        self._session = session
        self._status = StatusAggregator(session)
        self._protection = ProtectionTripController(session)

    @property
    def session(self) -> InstrumentSession:
        """The underlying session."""
        return self._session

    # -- Identity / lifecycle -----------------------------------------------

    def identify(self) -> str:
        """Query instrument identification string (``*IDN?``)."""
        return self._session.get_identification()

    def get_identity(self) -> InstrumentIdentity:
        """Query and parse instrument identification (``*IDN?``)."""
        return self._session.get_identity()

    def get_errors(self) -> list[str]:
        """Drain the instrument error queue."""
        return self._session.get_errors()

    def reset(self) -> None:
        """Reset instrument to factory defaults (``*RST``).

        Latched protection trips survive a reset; use :meth:`clear_trips`.
        """
        self._session.send_command("*RST")

    def close(self) -> None:
        """Close the underlying session."""
        self._session.close()

    # -- Voltage ------------------------------------------------------------

    def set_voltage(self, channel: int, voltage: float) -> None:
        """Set the output voltage setpoint.

        Raises:
            ValueError: If the channel or voltage is out of range.
        """
        _check_channel(channel)
        if not is_valid_voltage(voltage, channel):
            raise ValueError(
                f"Voltage {voltage}V outside 0-{max_voltage(channel)}V for CH{channel}"
            )
        self._session.send_command(f":SOURce{channel}:VOLTage {format_number(voltage)}")
        logger.debug("Set CH%d voltage: %.3fV", channel, voltage)

    def get_voltage(self, channel: int) -> float:
        """Query the output voltage setpoint."""
        _check_channel(channel)
        return self._query_float(f":SOURce{channel}:VOLTage?")

    def measure_voltage(self, channel: int) -> float:
        """Measure the actual output voltage."""
        _check_channel(channel)
        return self._query_float(f":MEASure:VOLTage? {channel_name(channel)}")

    # -- Current ------------------------------------------------------------

    def set_current(self, channel: int, current: float) -> None:
        """Set the output current limit.

        Raises:
            ValueError: If the channel or current is out of range.
        """
        _check_channel(channel)
        if not is_valid_current(current):
            raise ValueError(f"Current {current}A outside 0-{max_current()}A")
        self._session.send_command(f":SOURce{channel}:CURRent {format_number(current)}")
        logger.debug("Set CH%d current limit: %.3fA", channel, current)

    def get_current(self, channel: int) -> float:
        """Query the output current limit."""
        _check_channel(channel)
        return self._query_float(f":SOURce{channel}:CURRent?")

    def measure_current(self, channel: int) -> float:
        """Measure the actual output current."""
        _check_channel(channel)
        return self._query_float(f":MEASure:CURRent? {channel_name(channel)}")

    # -- Power --------------------------------------------------------------

    def measure_power(self, channel: int) -> float:
        """Measure the actual output power."""
        _check_channel(channel)
        return self._query_float(f":MEASure:POWEr? {channel_name(channel)}")

    # -- Output -------------------------------------------------------------

    def set_output(self, channel: int, enabled: bool) -> None:
        """Enable or disable a channel output."""
        _check_channel(channel)
        self._session.send_command(f":OUTPut {channel_name(channel)},{format_bool(enabled)}")
        logger.debug("Set CH%d output: %s", channel, format_bool(enabled))

    def is_output_enabled(self, channel: int) -> bool:
        """Query whether a channel output is on."""
        _check_channel(channel)
        return parse_bool(self._session.send_query(f":OUTPut? {channel_name(channel)}"))

    # -- OVP / OCP ----------------------------------------------------------

    def set_ovp_level(self, channel: int, level: float) -> None:
        """Set the over-voltage protection threshold.

        Raises:
            ValueError: If the level is outside 0.01 V to rated voltage + 1 V.
        """
        _check_channel(channel)
        if not is_valid_ovp_level(level, channel):
            raise ValueError(
                f"OVP level {level}V outside 0.01-{max_voltage(channel) + 1}V for CH{channel}"
            )
        self._session.send_command(
            f":SOURce{channel}:VOLTage:PROTection {format_number(level)}"
        )

    def get_ovp_level(self, channel: int) -> float:
        """Query the over-voltage protection threshold."""
        _check_channel(channel)
        return self._query_float(f":SOURce{channel}:VOLTage:PROTection?")

    def set_ovp_enabled(self, channel: int, enabled: bool) -> None:
        """Enable or disable over-voltage protection."""
        _check_channel(channel)
        self._session.send_command(
            f":SOURce{channel}:VOLTage:PROTection:STATe {format_bool(enabled)}"
        )

    def set_ocp_level(self, channel: int, level: float) -> None:
        """Set the over-current protection threshold.

        Raises:
            ValueError: If the level is outside 0.001 A to rated current + 1 A.
        """
        _check_channel(channel)
        if not is_valid_ocp_level(level):
            raise ValueError(f"OCP level {level}A outside 0.001-{max_current() + 1}A")
        self._session.send_command(
            f":SOURce{channel}:CURRent:PROTection {format_number(level)}"
        )

    def get_ocp_level(self, channel: int) -> float:
        """Query the over-current protection threshold."""
        _check_channel(channel)
        return self._query_float(f":SOURce{channel}:CURRent:PROTection?")

    def set_ocp_enabled(self, channel: int, enabled: bool) -> None:
        """Enable or disable over-current protection."""
        _check_channel(channel)
        self._session.send_command(
            f":SOURce{channel}:CURRent:PROTection:STATe {format_bool(enabled)}"
        )

    def check_trips(self, channel: int) -> TripStatus:
        """Read the latched OVP/OCP trip flags of a channel."""
        return self._protection.check_trips(channel)

    def clear_trips(self, channel: int) -> TripClearResult:
        """Clear latched trips on a channel. The output stays off."""
        return self._protection.clear_trips(channel)

    # -- Tracking -----------------------------------------------------------

    def set_track(self, channel: int, enabled: bool) -> None:
        """Enable or disable output tracking on CH1 or CH2.

        Raises:
            ValueError: If the channel does not support tracking.
        """
        if channel not in TRACKING_CHANNELS:
            raise ValueError(f"Channel {channel} does not support tracking (CH1 and CH2 only)")
        self._session.send_command(f":OUTPut:TRACk {channel_name(channel)},{format_bool(enabled)}")

    def set_tracking_mode(self, mode: str) -> None:
        """Set the tracking mode.

        Args:
            mode: ``"SYNC"`` (synchronised) or ``"INDE"`` (independent),
                case-insensitive.

        Raises:
            ValueError: For any other mode.
        """
        normalized = mode.strip().upper()
        if normalized not in TRACKING_MODES:
            raise ValueError(f"Tracking mode must be SYNC or INDE, got {mode!r}")
        self._session.send_command(f":SYSTem:TRACKMode {normalized}")

    # -- System -------------------------------------------------------------

    def set_otp(self, enabled: bool) -> None:
        """Enable or disable over-temperature protection."""
        self._session.send_command(f":SYSTem:OTP {format_bool(enabled)}")

    def set_beeper(self, enabled: bool) -> None:
        """Enable or disable the beeper."""
        self._session.send_command(f":SYSTem:BEEPer {format_bool(enabled)}")

    def set_brightness(self, brightness: int) -> None:
        """Set the display brightness in percent.

        Raises:
            ValueError: If brightness is outside 1-100.
        """
        if not is_valid_brightness(brightness):
            raise ValueError(f"Brightness {brightness} outside 1-100")
        self._session.send_command(f":SYSTem:BRIGhtness {brightness}")

    def set_screen_saver(self, enabled: bool) -> None:
        """Enable or disable the screen saver."""
        self._session.send_command(f":SYSTem:SAVer {format_bool(enabled)}")

    # -- Status -------------------------------------------------------------

    def status(self) -> tuple[tuple[ChannelSnapshot, ...], SystemSnapshot]:
        """Snapshot every channel and the system settings."""
        return self._status.snapshot()

    def channel_status(self, channel: int) -> ChannelSnapshot:
        """Snapshot a single channel."""
        return self._status.channel_snapshot(channel)

    # -- Private helpers ----------------------------------------------------

    def _query_float(self, query: str) -> float:
        response = self._session.send_query(query)
        value, ok = parse_float(response)
        if not ok:
            raise ParseError(query, response)
        return value


def _check_channel(channel: int) -> None:
    if not is_valid_channel(channel):
        raise ValueError(f"Channel {channel} out of range (1-3)")


def create_instrument(
    address: str = "",
    subnet_prefix: str | None = None,
    *,
    timeout_ms: int = 5000,
    default_address: str = DEFAULT_ADDRESS,
) -> Dp832:
    """Create a connected DP832 driver from a user-supplied address.

    Resolves *address* with :func:`~dp832.address.resolve_address`, opens a
    VISA session and returns a ready-to-use :class:`Dp832`.

    Args:
        address: Address in any form accepted by ``resolve_address``.
        subnet_prefix: LAN prefix for bare last-octet addresses.
        timeout_ms: I/O timeout in milliseconds.
        default_address: Address used when *address* is empty.

    Returns:
        Connected driver instance.

    Raises:
        InstrumentConnectionError: If the session cannot be opened.
    """
    resource = resolve_address(address, subnet_prefix, default=default_address)
    session = InstrumentSession(resource, timeout_ms=timeout_ms)
    session.connect()
    return Dp832(session)
