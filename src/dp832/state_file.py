"""Saved instrument settings.

Settings are stored as line-oriented ``key=value`` text::

    # DP832 settings
    CH1.Voltage=5.000
    CH1.OVPEnabled=ON
    System.Brightness=50

Blank lines and lines starting with ``#`` are ignored. The first ``=`` splits
the key from the value; further ``=`` characters belong to the value. Keys
are case-insensitive.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, MutableMapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from dp832.codec import (
    CHANNELS,
    TRACKING_CHANNELS,
    TRACKING_MODES,
    format_bool,
    format_number,
    is_valid_brightness,
    is_valid_current,
    is_valid_ocp_level,
    is_valid_ovp_level,
    is_valid_voltage,
)

if TYPE_CHECKING:
    from dp832.psu import Dp832
    from dp832.status import ChannelSnapshot, Reading, SystemSnapshot

logger = logging.getLogger(__name__)

HEADER = "# DP832 settings"

_TRUE_TOKENS = frozenset({"ON", "1", "TRUE"})
_FALSE_TOKENS = frozenset({"OFF", "0", "FALSE"})


class StateSettings(MutableMapping[str, str]):
    """Case-insensitive ``key -> value`` mapping.

    Lookups ignore case; iteration yields keys as first written.
    """

    def __init__(self, data: Mapping[str, str] | Iterable[tuple[str, str]] = ()) -> None:
        self._store: dict[str, tuple[str, str]] = {}
        self.update(data)

    def __setitem__(self, key: str, value: str) -> None:
        folded = key.casefold()
        original = self._store[folded][0] if folded in self._store else key
        self._store[folded] = (original, value)

    def __getitem__(self, key: str) -> str:
        return self._store[key.casefold()][1]

    def __delitem__(self, key: str) -> None:
        del self._store[key.casefold()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({dict(self.items())!r})"


def parse_state_file(lines: Iterable[str]) -> StateSettings:
    """Parse settings-file lines.

    Args:
        lines: Lines of the file, with or without line terminators.

    Returns:
        The settings found. A repeated key keeps its last value.
    """
    settings = StateSettings()
    for line in lines:
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#") or "=" not in trimmed:
            continue
        key, _, value = trimmed.partition("=")
        settings[key.strip()] = value.strip()
    return settings


def format_state_file(
    channels: Sequence[ChannelSnapshot], system: SystemSnapshot
) -> list[str]:
    """Render a status snapshot as settings-file lines.

    Fields that could not be read are left out.

    Args:
        channels: Channel snapshots, as returned by
            :meth:`~dp832.status.StatusAggregator.snapshot`.
        system: System snapshot.

    Returns:
        Lines without terminators, starting with a comment header.
    """
    lines = [HEADER]
    for ch in channels:
        prefix = f"CH{ch.channel}"
        _emit(lines, f"{prefix}.Voltage", ch.voltage_set, format_number)
        _emit(lines, f"{prefix}.Current", ch.current_set, format_number)
        _emit(lines, f"{prefix}.OVPLevel", ch.ovp_level, format_number)
        _emit(lines, f"{prefix}.OVPEnabled", ch.ovp_enabled, format_bool)
        _emit(lines, f"{prefix}.OCPLevel", ch.ocp_level, format_number)
        _emit(lines, f"{prefix}.OCPEnabled", ch.ocp_enabled, format_bool)
        _emit(lines, f"{prefix}.OutputEnabled", ch.output_enabled, format_bool)
    _emit(lines, "System.TrackMode", system.tracking_mode, str)
    _emit(lines, "System.TrackCH1", system.track_ch1, format_bool)
    _emit(lines, "System.TrackCH2", system.track_ch2, format_bool)
    _emit(lines, "System.OTP", system.otp_enabled, format_bool)
    _emit(lines, "System.Beeper", system.beeper_enabled, format_bool)
    _emit(lines, "System.Brightness", system.brightness, str)
    _emit(lines, "System.ScreenSaver", system.screen_saver_enabled, format_bool)
    return lines


def _emit(lines: list[str], key: str, reading: Reading, render: Callable[[object], str]) -> None:
    if reading.valid:
        lines.append(f"{key}={render(reading.value)}")


def parse_setting_bool(key: str, value: str) -> bool:
    """Parse a boolean setting (``ON/OFF``, ``1/0``, ``True/False``).

    Raises:
        ValueError: For any other value.
    """
    token = value.strip().upper()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise ValueError(f"{key}: expected ON/OFF, got {value!r}")


def _parse_setting_float(key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{key}: expected a number, got {value!r}") from None


def _parse_setting_int(key: str, value: str) -> int:
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        raise ValueError(f"{key}: expected an integer, got {value!r}") from None


def _parse_tracking_mode(key: str, value: str) -> str:
    mode = value.strip().upper()
    if mode not in TRACKING_MODES:
        raise ValueError(f"{key}: expected SYNC or INDE, got {value!r}")
    return mode


def apply_state(psu: Dp832, settings: Mapping[str, str]) -> list[str]:
    """Apply saved settings to an instrument.

    System settings go first, then voltage and current limits, then
    protection thresholds and states, and output states last. Unknown keys
    are ignored. Every value is parsed and range-checked before anything
    is written, so a bad file leaves the instrument untouched.

    Args:
        psu: Connected driver.
        settings: Settings as returned by :func:`parse_state_file`.

    Returns:
        The keys applied, in the order applied.

    Raises:
        ValueError: If a value cannot be parsed or is out of range.
    """
    if not isinstance(settings, StateSettings):
        settings = StateSettings(settings)

    steps: list[tuple[str, Callable[[], None]]] = []

    def add(
        key: str,
        parse: Callable[[str, str], Any],
        apply: Callable[[Any], None],
        check: Callable[[Any], bool] | None = None,
    ) -> None:
        if key not in settings:
            return
        raw = settings[key]
        value = parse(key, raw)
        if check is not None and not check(value):
            raise ValueError(f"{key}: {raw!r} is out of range")
        steps.append((key, lambda: apply(value)))

    add("System.TrackMode", _parse_tracking_mode, psu.set_tracking_mode)
    for ch in TRACKING_CHANNELS:
        add(f"System.TrackCH{ch}", parse_setting_bool, _bind(psu.set_track, ch))
    add("System.OTP", parse_setting_bool, psu.set_otp)
    add("System.Beeper", parse_setting_bool, psu.set_beeper)
    add("System.Brightness", _parse_setting_int, psu.set_brightness, is_valid_brightness)
    add("System.ScreenSaver", parse_setting_bool, psu.set_screen_saver)
    for ch in CHANNELS:
        add(
            f"CH{ch}.Voltage",
            _parse_setting_float,
            _bind(psu.set_voltage, ch),
            _bind(is_valid_voltage, ch, last=True),
        )
        add(f"CH{ch}.Current", _parse_setting_float, _bind(psu.set_current, ch), is_valid_current)
    for ch in CHANNELS:
        add(
            f"CH{ch}.OVPLevel",
            _parse_setting_float,
            _bind(psu.set_ovp_level, ch),
            _bind(is_valid_ovp_level, ch, last=True),
        )
        add(f"CH{ch}.OVPEnabled", parse_setting_bool, _bind(psu.set_ovp_enabled, ch))
        add(
            f"CH{ch}.OCPLevel", _parse_setting_float, _bind(psu.set_ocp_level, ch), is_valid_ocp_level
        )
        add(f"CH{ch}.OCPEnabled", parse_setting_bool, _bind(psu.set_ocp_enabled, ch))
    for ch in CHANNELS:
        add(f"CH{ch}.OutputEnabled", parse_setting_bool, _bind(psu.set_output, ch))

    applied: list[str] = []
    for key, step in steps:
        step()
        applied.append(key)
    logger.info("Applied %d settings", len(applied))
    return applied


def _bind(func: Callable[..., Any], channel: int, *, last: bool = False) -> Callable[[Any], Any]:
    """Fix the channel argument of *func*, first by default or last."""
    if last:
        return lambda value: func(value, channel)
    return lambda value: func(channel, value)


def load_state_file(path: str | Path) -> StateSettings:
    """Read and parse a settings file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        settings = parse_state_file(f)
    logger.debug("Loaded %d settings from %s", len(settings), path)
    return settings


def save_state_file(path: str | Path, lines: Iterable[str]) -> None:
    """Write settings-file lines, one per line."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(f"{line}\n")
    logger.debug("Saved settings to %s", path)
