"""Rigol DP832 instrument-session library.

This package drives the Rigol DP832 triple-output bench power supply over
SCPI. It includes:

- Address resolution from shorthand user input to VISA resource strings
- An instrument session owning the bus connection (PyVISA by default)
- Value parsing, formatting and range checks for the DP832 command set
- Multi-channel status snapshots that tolerate partial query failures
- Detection and clearing of latched OVP/OCP protection trips
- A typed driver, saved-settings files and YAML connection config
- An in-process emulator for testing without hardware

Modules:
    address: Address resolution and subnet detection.
    session: Instrument session and ``*IDN?`` parsing.
    codec: Response parsing, argument formatting, channel ratings.
    status: Status snapshots with per-field validity.
    protection: OVP/OCP trip checks and clears.
    psu: High-level driver.
    state_file: ``key=value`` settings files.
    config: YAML connection configuration.
    emulator: In-process SCPI emulator.

Example:
    Connect to a real instrument::

        from dp832 import create_instrument

        psu = create_instrument("136", subnet_prefix="192.168.1")
        psu.set_voltage(1, 5.0)
        psu.set_output(1, True)
        channels, system = psu.status()
        psu.close()

    Use the emulator for testing::

        from dp832 import Dp832, InstrumentSession, emulator_factory, make_dp832_emulator

        emulator = make_dp832_emulator()
        session = InstrumentSession("EMU", transport_factory=emulator_factory(emulator))
        session.connect()
        psu = Dp832(session)
"""

from dp832.address import (
    DEFAULT_ADDRESS,
    detect_subnet_prefix,
    format_gpib_address,
    format_tcpip_address,
    resolve_address,
)
from dp832.codec import (
    CHANNELS,
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
from dp832.config import Dp832Config, load_config, open_session
from dp832.emulator import (
    Dp832Emulator,
    Dp832EmulatorConfig,
    emulator_factory,
    make_dp832_emulator,
)
from dp832.errors import (
    Dp832Error,
    ErrorQueueOverflowError,
    InstrumentConnectionError,
    NotConnectedError,
    ParseError,
    TransportError,
)
from dp832.protection import (
    ProtectionKind,
    ProtectionTripController,
    TripClearResult,
    TripStatus,
)
from dp832.psu import Dp832, create_instrument
from dp832.session import InstrumentIdentity, InstrumentSession, parse_idn_response
from dp832.state_file import (
    StateSettings,
    apply_state,
    format_state_file,
    load_state_file,
    parse_state_file,
    save_state_file,
)
from dp832.status import (
    ChannelSnapshot,
    ProtectionState,
    Reading,
    StatusAggregator,
    SystemSnapshot,
)
from dp832.transport import ScpiTransport
from dp832.visa import VisaResource

__version__ = "0.1.0"

__all__ = [
    # Address
    "DEFAULT_ADDRESS",
    "detect_subnet_prefix",
    "format_gpib_address",
    "format_tcpip_address",
    "resolve_address",
    # Codec
    "CHANNELS",
    "format_bool",
    "format_number",
    "is_valid_brightness",
    "is_valid_channel",
    "is_valid_current",
    "is_valid_ocp_level",
    "is_valid_ovp_level",
    "is_valid_voltage",
    "max_current",
    "max_voltage",
    "parse_bool",
    "parse_float",
    # Config
    "Dp832Config",
    "load_config",
    "open_session",
    # Emulator
    "Dp832Emulator",
    "Dp832EmulatorConfig",
    "emulator_factory",
    "make_dp832_emulator",
    # Errors
    "Dp832Error",
    "ErrorQueueOverflowError",
    "InstrumentConnectionError",
    "NotConnectedError",
    "ParseError",
    "TransportError",
    # Protection
    "ProtectionKind",
    "ProtectionTripController",
    "TripClearResult",
    "TripStatus",
    # Driver
    "Dp832",
    "create_instrument",
    # Session
    "InstrumentIdentity",
    "InstrumentSession",
    "parse_idn_response",
    # Settings file
    "StateSettings",
    "apply_state",
    "format_state_file",
    "load_state_file",
    "parse_state_file",
    "save_state_file",
    # Status
    "ChannelSnapshot",
    "ProtectionState",
    "Reading",
    "StatusAggregator",
    "SystemSnapshot",
    # Transport
    "ScpiTransport",
    # VISA
    "VisaResource",
]
