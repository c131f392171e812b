"""Rigol DP832 emulator.

Provides an in-process SCPI emulator implementing the ``ScpiTransport``
protocol, so sessions, the driver and the status/protection components can
be exercised without hardware.

The emulator models the three DP832 channels with their ratings, protection
thresholds and latched trips. A trip latches when the output is on,
protection is enabled and the measured quantity exceeds the threshold; the
output is then forced off. Trips survive ``*RST`` and are released only by
``:OUTPut:OVP:CLEar`` / ``:OUTPut:OCP:CLEar``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from dp832.codec import (
    CHANNELS,
    PROTECTION_HEADROOM,
    TRACKING_CHANNELS,
    TRACKING_MODES,
    format_bool,
    format_number,
    max_current,
    max_voltage,
)
from dp832.errors import TransportError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Long-form -> short-form SCPI keyword map
# ---------------------------------------------------------------------------

_LONG_TO_SHORT: dict[str, str] = {
    "VOLTAGE": "VOLT",
    "CURRENT": "CURR",
    "POWER": "POW",
    "OUTPUT": "OUTP",
    "MEASURE": "MEAS",
    "SOURCE": "SOUR",
    "LEVEL": "LEV",
    "IMMEDIATE": "IMM",
    "PROTECTION": "PROT",
    "STATE": "STAT",
    "SYSTEM": "SYST",
    "ERROR": "ERR",
    "CLEAR": "CLE",
    "TRACK": "TRAC",
    "TRACKMODE": "TRACKM",
    "BEEPER": "BEEP",
    "BRIGHTNESS": "BRIG",
    "SAVER": "SAV",
}

# Segments that are optional and are dropped during normalization
_OPTIONAL_SEGMENTS: set[str] = {"SOUR", "LEV", "IMM"}

_COMMAND_ERROR = (-100, "Command error")
_PARAMETER_ERROR = (-220, "Parameter error")
_SETTINGS_CONFLICT = (-221, "Settings conflict")


def _normalize_header(header: str) -> tuple[str, int | None]:
    """Normalize a SCPI header to canonical short form.

    Numeric suffixes are split off each segment before mapping; the suffix
    of a ``SOURce`` segment selects the channel.

    Returns:
        ``(normalized_header, source_channel)``; the channel is None when the
        header carries no ``SOURce<n>`` suffix.
    """
    upper = header.upper().lstrip(":")
    channel: int | None = None
    short_segments: list[str] = []
    for segment in upper.split(":"):
        keyword = segment.rstrip("0123456789")
        suffix = segment[len(keyword):]
        short = _LONG_TO_SHORT.get(keyword, keyword)
        if short == "SOUR" and suffix:
            channel = int(suffix)
        if short not in _OPTIONAL_SEGMENTS:
            short_segments.append(short)
    return ":".join(short_segments), channel


def _parse_on_off(token: str) -> bool | None:
    value = token.strip().upper()
    if value in ("ON", "1"):
        return True
    if value in ("OFF", "0"):
        return False
    return None


def _parse_channel_token(token: str) -> int | None:
    value = token.strip().upper()
    if not value.startswith("CH"):
        return None
    try:
        channel = int(value[2:])
    except ValueError:
        return None
    return channel if channel in CHANNELS else None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Dp832EmulatorConfig:
    """Configuration for a DP832 emulator instance.

    Args:
        identity: ``*IDN?`` response string.
        brightness: Display brightness restored by ``*RST`` (1-100).
    """

    identity: str
    brightness: int = 50

    def __post_init__(self) -> None:
        if not self.identity:
            raise ValueError("identity must be non-empty")
        if not 1 <= self.brightness <= 100:
            raise ValueError("brightness must be within 1-100")


# ---------------------------------------------------------------------------
# Internal state
# ---------------------------------------------------------------------------


@dataclass
class _ChannelState:
    channel: int
    voltage_setpoint: float = 0.0
    current_limit: float = 0.0
    output_enabled: bool = False
    ovp_level: float = 0.0
    ovp_enabled: bool = False
    ocp_level: float = 0.0
    ocp_enabled: bool = False
    ovp_tripped: bool = False
    ocp_tripped: bool = False
    measured_voltage: float | None = None
    measured_current: float | None = None

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Restore power-on settings. Latched trips are left untouched."""
        self.voltage_setpoint = 0.0
        self.current_limit = max_current()
        self.output_enabled = False
        self.ovp_level = max_voltage(self.channel) + PROTECTION_HEADROOM
        self.ovp_enabled = False
        self.ocp_level = max_current() + PROTECTION_HEADROOM
        self.ocp_enabled = False
        self.measured_voltage = None
        self.measured_current = None

    @property
    def voltage(self) -> float:
        if self.measured_voltage is not None:
            return self.measured_voltage
        return self.voltage_setpoint if self.output_enabled else 0.0

    @property
    def current(self) -> float:
        if self.measured_current is not None:
            return self.measured_current
        return 0.0


@dataclass
class _SystemState:
    tracking_mode: str = "SYNC"
    track: dict[int, bool] = field(default_factory=lambda: {ch: False for ch in TRACKING_CHANNELS})
    otp_enabled: bool = True
    beeper_enabled: bool = True
    brightness: int = 50
    screen_saver_enabled: bool = False


# ---------------------------------------------------------------------------
# Emulator
# ---------------------------------------------------------------------------

_QueryHandler = Callable[[int, str], str]
_SetHandler = Callable[[int, str], None]


class Dp832Emulator:
    """In-process DP832 emulator implementing ``ScpiTransport``.

    Channel-scoped ``:SOURce<n>`` headers address channel *n*; a header
    without a suffix addresses CH1. Commands that take a ``CH<n>`` argument
    address that channel instead.

    Args:
        config: Emulator configuration.

    Attributes:
        history: Every line written, in order.
    """

    def __init__(self, config: Dp832EmulatorConfig) -> None:
        self._config = config
        self._channels: dict[int, _ChannelState] = {ch: _ChannelState(ch) for ch in CHANNELS}
        self._system = _SystemState(brightness=config.brightness)
        self._responses: list[str | None] = []
        self._error_queue: list[tuple[int, str]] = []
        self._failing_queries: set[str] = set()
        self._failing_commands: set[str] = set()
        self._is_open = False
        self.history: list[str] = []

        self._set_handlers: dict[str, _SetHandler] = {
            "VOLT": self._set_voltage,
            "CURR": self._set_current,
            "VOLT:PROT": self._set_ovp_level,
            "VOLT:PROT:STAT": self._set_ovp_state,
            "CURR:PROT": self._set_ocp_level,
            "CURR:PROT:STAT": self._set_ocp_state,
            "OUTP": self._set_output,
            "OUTP:STAT": self._set_output,
            "OUTP:OVP:CLE": self._clear_ovp,
            "OUTP:OCP:CLE": self._clear_ocp,
            "OUTP:TRAC": self._set_track,
            "SYST:TRACKM": self._set_tracking_mode,
            "SYST:OTP": self._set_otp,
            "SYST:BEEP": self._set_beeper,
            "SYST:BRIG": self._set_brightness,
            "SYST:SAV": self._set_screen_saver,
        }

        self._query_handlers: dict[str, _QueryHandler] = {
            "VOLT?": lambda ch, _: format_number(self._channels[ch].voltage_setpoint),
            "CURR?": lambda ch, _: format_number(self._channels[ch].current_limit),
            "VOLT:PROT?": lambda ch, _: format_number(self._channels[ch].ovp_level),
            "VOLT:PROT:STAT?": lambda ch, _: format_bool(self._channels[ch].ovp_enabled),
            "VOLT:PROT:TRIP?": lambda ch, _: format_bool(self._channels[ch].ovp_tripped),
            "CURR:PROT?": lambda ch, _: format_number(self._channels[ch].ocp_level),
            "CURR:PROT:STAT?": lambda ch, _: format_bool(self._channels[ch].ocp_enabled),
            "CURR:PROT:TRIP?": lambda ch, _: format_bool(self._channels[ch].ocp_tripped),
            "MEAS:VOLT?": self._measure_voltage,
            "MEAS:CURR?": self._measure_current,
            "MEAS:POW?": self._measure_power,
            "OUTP?": self._get_output,
            "OUTP:STAT?": self._get_output,
            "OUTP:TRAC?": self._get_track,
            "SYST:TRACKM?": lambda _ch, _args: self._system.tracking_mode,
            "SYST:OTP?": lambda _ch, _args: format_bool(self._system.otp_enabled),
            "SYST:BEEP?": lambda _ch, _args: format_bool(self._system.beeper_enabled),
            "SYST:BRIG?": lambda _ch, _args: str(self._system.brightness),
            "SYST:SAV?": lambda _ch, _args: format_bool(self._system.screen_saver_enabled),
        }

    # -- Transport interface ------------------------------------------------

    @property
    def is_open(self) -> bool:
        """Return True between :meth:`open` and :meth:`close`."""
        return self._is_open

    def open(self) -> None:
        """Open the emulator (no bus to acquire)."""
        self._is_open = True

    def close(self) -> None:
        """Close the emulator (no-op for in-process transport)."""
        self._is_open = False

    def write(self, message: str) -> None:
        """Process a SCPI command or query string."""
        line = message.strip()
        if not line:
            return
        self.history.append(line)
        if line.upper() in self._failing_commands:
            raise TransportError(f"Write of {line!r} failed")

        is_query, header, args = self._parse_line(line)

        if self._handle_common_command(header, is_query, line):
            return

        self._dispatch(header, args, is_query, line)
        self._evaluate_protection()

    def read(self) -> str:
        """Return the oldest pending response.

        Raises:
            TransportError: If no response is pending, which is how an
                unanswered query times out on a real bus.
        """
        if not self._responses:
            raise TransportError("Timeout: no response pending")
        response = self._responses.pop(0)
        if response is None:
            raise TransportError("Injected read failure")
        return response

    # -- Test helpers -------------------------------------------------------

    def set_measured_voltage(self, value: float, channel: int = 1) -> None:
        """Set a fixed measured voltage override for testing.

        The override takes part in OVP trip evaluation immediately.

        Args:
            value: Voltage reading to return from ``:MEASure:VOLTage?``.
            channel: Channel number (1-3).
        """
        self._get_channel_state(channel).measured_voltage = value
        self._evaluate_protection()

    def set_measured_current(self, value: float, channel: int = 1) -> None:
        """Set a fixed measured current override for testing.

        The override takes part in OCP trip evaluation immediately.

        Args:
            value: Current reading to return from ``:MEASure:CURRent?``.
            channel: Channel number (1-3).
        """
        self._get_channel_state(channel).measured_current = value
        self._evaluate_protection()

    def fail_query(self, query: str) -> None:
        """Make every read following *query* raise ``TransportError``.

        Matching is on the exact query line as written, ignoring case and
        surrounding whitespace.
        """
        self._failing_queries.add(query.strip().upper())

    def restore_query(self, query: str) -> None:
        """Undo :meth:`fail_query` for *query*."""
        self._failing_queries.discard(query.strip().upper())

    def fail_command(self, command: str) -> None:
        """Make every write of *command* raise ``TransportError``.

        The line is still recorded in :attr:`history` but has no effect.
        """
        self._failing_commands.add(command.strip().upper())

    def restore_command(self, command: str) -> None:
        """Undo :meth:`fail_command` for *command*."""
        self._failing_commands.discard(command.strip().upper())

    def push_error(self, code: int, message: str) -> None:
        """Append an entry to the instrument error queue."""
        self._error_queue.append((code, message))

    def channel_state(self, channel: int) -> _ChannelState:
        """Return the live state of *channel* for assertions."""
        return self._get_channel_state(channel)

    # -- Private helpers ----------------------------------------------------

    @staticmethod
    def _parse_line(line: str) -> tuple[bool, str, str]:
        """Parse a SCPI line into (is_query, header, args)."""
        is_query = "?" in line
        if is_query:
            qmark_idx = line.index("?")
            header = line[: qmark_idx + 1]
            args = line[qmark_idx + 1 :].strip()
        else:
            parts = line.split(None, 1)
            header = parts[0]
            args = parts[1] if len(parts) > 1 else ""
        return is_query, header, args

    def _handle_common_command(self, header: str, is_query: bool, line: str) -> bool:
        """Handle IEEE 488.2 and :SYSTem:ERRor? commands. Returns True if handled."""
        upper_header = header.upper()
        if upper_header == "*IDN?":
            self._respond(line, self._config.identity)
            return True
        if upper_header == "*OPC?":
            self._respond(line, "1")
            return True
        if upper_header == "*RST":
            self._reset()
            return True
        if upper_header == "*CLS":
            self._error_queue.clear()
            return True
        if is_query and _normalize_header(header.rstrip("?"))[0] == "SYST:ERR":
            self._respond(line, self._pop_error())
            return True
        return False

    def _dispatch(self, header: str, args: str, is_query: bool, line: str) -> None:
        """Dispatch a normalized command or query to handler tables."""
        norm_header, source_channel = _normalize_header(header.rstrip("?"))
        channel = source_channel if source_channel is not None else 1
        if channel not in self._channels:
            self._error_queue.append(_COMMAND_ERROR)
            return

        if is_query:
            handler = self._query_handlers.get(norm_header + "?")
            if handler is None:
                self._error_queue.append(_COMMAND_ERROR)
                return
            response = handler(channel, args)
            if response:
                self._respond(line, response)
            return

        handler_set = self._set_handlers.get(norm_header)
        if handler_set is None:
            self._error_queue.append(_COMMAND_ERROR)
            return
        handler_set(channel, args)

    def _respond(self, line: str, response: str) -> None:
        if line.strip().upper() in self._failing_queries:
            self._responses.append(None)
        else:
            self._responses.append(response)

    def _get_channel_state(self, channel: int) -> _ChannelState:
        if channel not in self._channels:
            raise ValueError(f"Channel {channel} out of range (1-{len(CHANNELS)})")
        return self._channels[channel]

    def _reset(self) -> None:
        """Reset every setting to its power-on value. Trips stay latched."""
        for ch in self._channels.values():
            ch.reset()
        self._system = _SystemState(brightness=self._config.brightness)

    def _pop_error(self) -> str:
        if self._error_queue:
            code, msg = self._error_queue.pop(0)
            return f'{code},"{msg}"'
        return '0,"No error"'

    def _evaluate_protection(self) -> None:
        for ch in self._channels.values():
            if not ch.output_enabled:
                continue
            if ch.ovp_enabled and ch.voltage > ch.ovp_level:
                ch.ovp_tripped = True
                ch.output_enabled = False
                logger.debug("Emulated CH%d OVP trip at %.3fV", ch.channel, ch.voltage)
            elif ch.ocp_enabled and ch.current > ch.ocp_level:
                ch.ocp_tripped = True
                ch.output_enabled = False
                logger.debug("Emulated CH%d OCP trip at %.3fA", ch.channel, ch.current)

    def _parse_value(self, args: str) -> float | None:
        try:
            return float(args.strip())
        except ValueError:
            self._error_queue.append(_PARAMETER_ERROR)
            return None

    def _parse_flag(self, args: str) -> bool | None:
        value = _parse_on_off(args)
        if value is None:
            self._error_queue.append(_PARAMETER_ERROR)
        return value

    def _split_channel_args(self, args: str) -> tuple[int, str] | None:
        """Parse ``CH<n>,<value>`` arguments."""
        channel_token, _, value = args.partition(",")
        channel = _parse_channel_token(channel_token)
        if channel is None:
            self._error_queue.append(_PARAMETER_ERROR)
            return None
        return channel, value

    def _arg_channel(self, args: str) -> int | None:
        """Channel named by a ``CH<n>`` argument; CH1 when omitted."""
        if not args.strip():
            return 1
        channel = _parse_channel_token(args)
        if channel is None:
            self._error_queue.append(_PARAMETER_ERROR)
        return channel

    # -- Set handlers -------------------------------------------------------

    def _set_voltage(self, channel: int, args: str) -> None:
        value = self._parse_value(args)
        if value is None:
            return
        if not 0.0 <= value <= max_voltage(channel):
            self._error_queue.append(_PARAMETER_ERROR)
            return
        self._channels[channel].voltage_setpoint = value

    def _set_current(self, channel: int, args: str) -> None:
        value = self._parse_value(args)
        if value is None:
            return
        if not 0.0 <= value <= max_current():
            self._error_queue.append(_PARAMETER_ERROR)
            return
        self._channels[channel].current_limit = value

    def _set_ovp_level(self, channel: int, args: str) -> None:
        value = self._parse_value(args)
        if value is not None:
            self._channels[channel].ovp_level = value

    def _set_ovp_state(self, channel: int, args: str) -> None:
        value = self._parse_flag(args)
        if value is not None:
            self._channels[channel].ovp_enabled = value

    def _set_ocp_level(self, channel: int, args: str) -> None:
        value = self._parse_value(args)
        if value is not None:
            self._channels[channel].ocp_level = value

    def _set_ocp_state(self, channel: int, args: str) -> None:
        value = self._parse_flag(args)
        if value is not None:
            self._channels[channel].ocp_enabled = value

    def _set_output(self, _channel: int, args: str) -> None:
        """Parse ``:OUTPut CH<n>,ON|OFF``."""
        parsed = self._split_channel_args(args)
        if parsed is None:
            return
        channel, token = parsed
        value = self._parse_flag(token)
        if value is None:
            return
        state = self._channels[channel]
        if value and (state.ovp_tripped or state.ocp_tripped):
            self._error_queue.append(_SETTINGS_CONFLICT)
            return
        state.output_enabled = value

    def _clear_ovp(self, _channel: int, args: str) -> None:
        channel = self._arg_channel(args)
        if channel is not None:
            self._channels[channel].ovp_tripped = False

    def _clear_ocp(self, _channel: int, args: str) -> None:
        channel = self._arg_channel(args)
        if channel is not None:
            self._channels[channel].ocp_tripped = False

    def _set_track(self, _channel: int, args: str) -> None:
        parsed = self._split_channel_args(args)
        if parsed is None:
            return
        channel, token = parsed
        value = self._parse_flag(token)
        if value is None:
            return
        if channel not in TRACKING_CHANNELS:
            self._error_queue.append(_PARAMETER_ERROR)
            return
        self._system.track[channel] = value

    def _set_tracking_mode(self, _channel: int, args: str) -> None:
        mode = args.strip().upper()
        if mode not in TRACKING_MODES:
            self._error_queue.append(_PARAMETER_ERROR)
            return
        self._system.tracking_mode = mode

    def _set_otp(self, _channel: int, args: str) -> None:
        value = self._parse_flag(args)
        if value is not None:
            self._system.otp_enabled = value

    def _set_beeper(self, _channel: int, args: str) -> None:
        value = self._parse_flag(args)
        if value is not None:
            self._system.beeper_enabled = value

    def _set_brightness(self, _channel: int, args: str) -> None:
        value = self._parse_value(args)
        if value is None:
            return
        if not 1 <= value <= 100:
            self._error_queue.append(_PARAMETER_ERROR)
            return
        self._system.brightness = int(value)

    def _set_screen_saver(self, _channel: int, args: str) -> None:
        value = self._parse_flag(args)
        if value is not None:
            self._system.screen_saver_enabled = value

    # -- Query handlers -----------------------------------------------------

    def _measure_voltage(self, _channel: int, args: str) -> str:
        channel = self._arg_channel(args)
        if channel is None:
            return ""
        return format_number(self._channels[channel].voltage)

    def _measure_current(self, _channel: int, args: str) -> str:
        channel = self._arg_channel(args)
        if channel is None:
            return ""
        return format_number(self._channels[channel].current)

    def _measure_power(self, _channel: int, args: str) -> str:
        channel = self._arg_channel(args)
        if channel is None:
            return ""
        state = self._channels[channel]
        return format_number(state.voltage * state.current)

    def _get_output(self, _channel: int, args: str) -> str:
        channel = self._arg_channel(args)
        if channel is None:
            return ""
        return format_bool(self._channels[channel].output_enabled)

    def _get_track(self, _channel: int, args: str) -> str:
        channel = self._arg_channel(args)
        if channel is None:
            return ""
        if channel not in TRACKING_CHANNELS:
            self._error_queue.append(_PARAMETER_ERROR)
            return ""
        return format_bool(self._system.track[channel])


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_dp832_emulator(serial: str = "DP8C000000000", *, firmware: str = "00.01.16") -> Dp832Emulator:
    """Create a DP832 emulator.

    Args:
        serial: Serial number for the ``*IDN?`` response.
        firmware: Firmware version for the ``*IDN?`` response.

    Returns:
        Configured emulator instance.
    """
    config = Dp832EmulatorConfig(identity=f"RIGOL TECHNOLOGIES,DP832,{serial},{firmware}")
    return Dp832Emulator(config)


def emulator_factory(emulator: Dp832Emulator) -> Callable[..., Dp832Emulator]:
    """Wrap *emulator* as a session ``transport_factory``.

    The returned callable ignores the address and timeout and always
    hands back *emulator*::

        emu = make_dp832_emulator()
        session = InstrumentSession("EMU", transport_factory=emulator_factory(emu))
    """

    def factory(_address: str, **_kwargs: object) -> Dp832Emulator:
        return emulator

    return factory
