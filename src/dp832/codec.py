"""DP832 value parsing, formatting and range checks.

Responses from the instrument are parsed leniently: nothing in this module
raises on bad input. Callers get a default value plus an ``ok`` flag and
decide whether that is an error.

Numeric command arguments are always rendered with exactly three decimal
places. The instrument's command parser expects this precision, so
:func:`format_number` is part of the wire protocol rather than a display
choice.

Channel ratings:
    CH1, CH2: 0-30 V, 0-3 A
    CH3:      0-5 V,  0-3 A
"""

from __future__ import annotations

import math

CHANNELS: tuple[int, ...] = (1, 2, 3)
"""Output channel numbers of the DP832."""

TRACKING_CHANNELS: tuple[int, ...] = (1, 2)
"""Channels that support output tracking."""

TRACKING_MODES: frozenset[str] = frozenset({"SYNC", "INDE"})

_LOW_VOLTAGE_CHANNEL = 3
_LOW_VOLTAGE_MAX = 5.0
_HIGH_VOLTAGE_MAX = 30.0
_CURRENT_MAX = 3.0

# Protection thresholds may be set this far above the output ceiling.
PROTECTION_HEADROOM = 1.0

_OVP_MIN = 0.01
_OCP_MIN = 0.001


# -- Parsing ----------------------------------------------------------------


def parse_bool(raw: str) -> bool:
    """Parse an ON/OFF style response.

    Returns True only for ``"ON"`` (any case) or ``"1"`` after stripping
    whitespace. Every other value, including the empty string, is False.

    Args:
        raw: The raw response string.

    Returns:
        The parsed boolean.
    """
    token = raw.strip()
    return token.upper() == "ON" or token == "1"


def parse_float(raw: str) -> tuple[float, bool]:
    """Parse a numeric response without raising.

    Accepts NR1 (``"42"``), NR2 (``"1.230"``) and NR3 (``"1.23E+1"``) forms.
    Parsing does not depend on the process locale.

    Args:
        raw: The raw response string.

    Returns:
        ``(value, True)`` on success, ``(0.0, False)`` if the text is not a
        finite number.
    """
    try:
        value = float(raw.strip())
    except ValueError:
        return 0.0, False
    if not math.isfinite(value):
        return 0.0, False
    return value, True


# -- Formatting -------------------------------------------------------------


def format_number(value: float) -> str:
    """Format a numeric command argument with three decimal places.

    Args:
        value: The value to format.

    Returns:
        The value rendered as e.g. ``"12.500"``.
    """
    return f"{value:.3f}"


def format_bool(value: bool) -> str:
    """Format a boolean command argument.

    Args:
        value: The boolean to format.

    Returns:
        ``"ON"`` for True, ``"OFF"`` for False.
    """
    return "ON" if value else "OFF"


def channel_name(channel: int) -> str:
    """Return the channel token used in command arguments (``"CH2"``)."""
    return f"CH{channel}"


# -- Ratings ----------------------------------------------------------------


def max_voltage(channel: int) -> float:
    """Return the rated output voltage for a channel.

    Args:
        channel: Channel number.

    Returns:
        5.0 for channel 3, 30.0 for the others.
    """
    return _LOW_VOLTAGE_MAX if channel == _LOW_VOLTAGE_CHANNEL else _HIGH_VOLTAGE_MAX


def max_current() -> float:
    """Return the rated output current, the same for every channel."""
    return _CURRENT_MAX


# -- Range checks -----------------------------------------------------------


def is_valid_channel(channel: int) -> bool:
    """Return True for an existing output channel number."""
    return channel in CHANNELS


def is_valid_voltage(voltage: float, channel: int) -> bool:
    """Return True if *voltage* is in ``[0, max_voltage(channel)]``."""
    return 0.0 <= voltage <= max_voltage(channel)


def is_valid_current(current: float) -> bool:
    """Return True if *current* is in ``[0, max_current()]``."""
    return 0.0 <= current <= max_current()


def is_valid_ovp_level(level: float, channel: int) -> bool:
    """Return True if *level* is a settable OVP threshold for *channel*.

    The range is ``[0.01, max_voltage(channel) + 1]``.
    """
    return _OVP_MIN <= level <= max_voltage(channel) + PROTECTION_HEADROOM


def is_valid_ocp_level(level: float) -> bool:
    """Return True if *level* is a settable OCP threshold.

    The range is ``[0.001, max_current() + 1]``.
    """
    return _OCP_MIN <= level <= max_current() + PROTECTION_HEADROOM


def is_valid_brightness(brightness: int) -> bool:
    """Return True if *brightness* is a settable display brightness (1-100)."""
    return 1 <= brightness <= 100
