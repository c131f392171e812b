"""Connection configuration.

Connection defaults live in a small YAML file:

.. code-block:: yaml

    instrument:
      address: "136"
      subnet_prefix: "192.168.1"
      timeout_ms: 5000
      max_error_reads: 32

Files are looked up in the following order; the first one that exists wins:

1. the path in ``DP832_CONFIG``
2. ``~/.config/dp832/config.yaml``
3. ``/etc/dp832/config.yaml``

``DP832_ADDRESS`` and ``DP832_SUBNET`` override the file values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from dp832.address import DEFAULT_ADDRESS, detect_subnet_prefix, resolve_address
from dp832.session import DEFAULT_MAX_ERROR_READS, InstrumentSession

logger = logging.getLogger(__name__)

CONFIG_ENV = "DP832_CONFIG"
ADDRESS_ENV = "DP832_ADDRESS"
SUBNET_ENV = "DP832_SUBNET"


def _get_search_paths() -> list[Path]:
    """Get search paths for the configuration file.

    Returns:
        Candidate files, in priority order.
    """
    paths: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        paths.append(Path(env_path))

    paths.append(Path.home() / ".config" / "dp832" / "config.yaml")
    paths.append(Path("/etc/dp832/config.yaml"))

    return paths


@dataclass(frozen=True)
class Dp832Config:
    """Connection settings for one instrument.

    Attributes:
        address: Address in any form accepted by
            :func:`~dp832.address.resolve_address`. Empty selects
            ``default_address``.
        subnet_prefix: LAN prefix used for bare last-octet addresses.
        auto_subnet: Detect the subnet prefix from the host's interfaces
            when ``subnet_prefix`` is not set.
        timeout_ms: I/O timeout in milliseconds.
        max_error_reads: Bound on error-queue reads per drain.
        default_address: Address used when ``address`` is empty.
    """

    address: str = ""
    subnet_prefix: str | None = None
    auto_subnet: bool = False
    timeout_ms: int = 5000
    max_error_reads: int = DEFAULT_MAX_ERROR_READS
    default_address: str = DEFAULT_ADDRESS

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        if self.max_error_reads < 1:
            raise ValueError("max_error_reads must be >= 1")
        if not self.default_address:
            raise ValueError("default_address must be non-empty")

    def resolve(self) -> str:
        """Return the fully qualified resource string for this config."""
        prefix = self.subnet_prefix
        if not prefix and self.auto_subnet:
            prefix = detect_subnet_prefix()
        return resolve_address(self.address, prefix, default=self.default_address)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Dp832Config:
        """Build a config from the ``instrument`` mapping of a YAML file.

        Raises:
            ValueError: If a field has the wrong type or value.
        """
        if not isinstance(data, dict):
            raise ValueError("instrument must be a mapping")
        subnet = data.get("subnet_prefix")
        try:
            return cls(
                address=str(data.get("address", "") or ""),
                subnet_prefix=str(subnet) if subnet else None,
                auto_subnet=bool(data.get("auto_subnet", False)),
                timeout_ms=int(data.get("timeout_ms", 5000)),
                max_error_reads=int(data.get("max_error_reads", DEFAULT_MAX_ERROR_READS)),
                default_address=str(data.get("default_address", DEFAULT_ADDRESS)),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid instrument config: {exc}") from exc


def load_config(path: str | Path | None = None) -> Dp832Config:
    """Load the connection configuration.

    Args:
        path: Explicit config file. When omitted the search paths are used
            and a missing file yields the defaults.

    Returns:
        The configuration with environment overrides applied.

    Raises:
        FileNotFoundError: If an explicit *path* does not exist.
        ValueError: If the file is not a valid configuration.
    """
    if path is not None:
        config_path: Path | None = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = next((p for p in _get_search_paths() if p.is_file()), None)

    config = Dp832Config()
    if config_path is not None:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("Config must be a YAML mapping")
        config = Dp832Config.from_dict(data.get("instrument") or {})
        logger.debug("Loaded config from %s", config_path)

    address = os.environ.get(ADDRESS_ENV)
    if address:
        config = replace(config, address=address)
    subnet = os.environ.get(SUBNET_ENV)
    if subnet:
        config = replace(config, subnet_prefix=subnet)
    return config


def open_session(config: Dp832Config | None = None) -> InstrumentSession:
    """Open a session using *config*, or :func:`load_config` when omitted.

    Raises:
        InstrumentConnectionError: If the session cannot be opened.
    """
    if config is None:
        config = load_config()
    session = InstrumentSession(
        config.resolve(),
        timeout_ms=config.timeout_ms,
        max_error_reads=config.max_error_reads,
    )
    session.connect()
    return session
