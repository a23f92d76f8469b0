import logging
import math
import os
import re

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import dotenv

from .constants import MAX_BLOBS_PER_TRANSACTION, WEI_PER_ETH
from .exceptions import ConfigurationError
from .logger import mask_endpoint

logger = logging.getLogger(__name__)

_PRIVATE_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
_TRUE_VALUES = {"1", "t", "true", "y", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "n", "no", "off"}


def validate_websocket_url(raw_url: str) -> str:
    """
    Normalize and validate a WebSocket endpoint.

    A missing scheme is treated as ``ws://``; only ``ws`` and ``wss`` are accepted.

    :param raw_url: Endpoint as configured.
    :return: The normalized URL.
    """
    if not raw_url:
        raise ConfigurationError("WebSocket URL cannot be empty")
    if "://" not in raw_url:
        raw_url = "ws://" + raw_url
    parsed = urlparse(raw_url)
    if parsed.scheme not in ("ws", "wss"):
        raise ConfigurationError(f"Invalid WebSocket URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ConfigurationError("WebSocket URL must include a host")
    return raw_url


def validate_private_key(private_key: str) -> str:
    """Return the key as 64 hex characters without the ``0x`` prefix."""
    if not private_key:
        raise ConfigurationError("PRIVATE_KEY is required")
    key = private_key[2:] if private_key.lower().startswith("0x") else private_key
    if not _PRIVATE_KEY_PATTERN.match(key):
        raise ConfigurationError("PRIVATE_KEY must be 64 hexadecimal characters")
    return key


def _get_env_variable(var_name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(var_name)
    if value is None or value == "":
        return default
    return value


def _get_env_int(var_name: str, default: int) -> int:
    value = _get_env_variable(var_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {var_name} value {value!r}, using default {default} ⚠️")
        return default


def _get_env_float(var_name: str, default: float) -> float:
    value = _get_env_variable(var_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {var_name} value {value!r}, using default {default} ⚠️")
        return default


def _get_env_seconds(var_name: str, default: float) -> float:
    """Seconds, accepting either ``15`` or ``15s``."""
    value = _get_env_variable(var_name)
    if value is None:
        return default
    try:
        return float(value[:-1] if value.endswith("s") else value)
    except ValueError:
        logger.warning(f"Invalid {var_name} value {value!r}, using default {default}s ⚠️")
        return default


def _get_env_bool(var_name: str, default: bool) -> bool:
    value = _get_env_variable(var_name)
    if value is None:
        return default
    if value.strip().lower() in _TRUE_VALUES:
        return True
    if value.strip().lower() in _FALSE_VALUES:
        return False
    logger.warning(f"Invalid {var_name} value {value!r}, using default {default} ⚠️")
    return default


@dataclass(frozen=True)
class Configuration:
    """
    Immutable runtime settings, built once at startup and handed to every component.

    Attribute names match the environment variables they are read from.
    """
    PRIVATE_KEY: str = field(default="", repr=False)
    WS_ENDPOINT: str = "wss://ethereum-holesky-rpc.publicnode.com"
    RPC_ENDPOINT: str = "https://ethereum-holesky-rpc.publicnode.com"
    SERVER_ADDRESS: str = "localhost:13524"
    USE_PAYLOAD: bool = True
    OFFSET: int = 1
    BID_AMOUNT: float = 0.001  # ETH
    BID_AMOUNT_STD_DEV_PERCENTAGE: float = 100.0
    PRIORITY_FEE: int = 1  # wei
    NUM_BLOB: int = 0
    DEFAULT_TIMEOUT: float = 15.0  # seconds
    RUN_DURATION_MINUTES: int = 0  # 0 runs until stopped
    DECAY_DURATION_MS: int = 36_000  # 36 seconds, roughly 2 blocks
    TRANSFER_VALUE_WEI: int = 1_000_000_000
    GAS_LIMIT: int = 200_000
    BLOB_FEE_MARGIN_PERCENT: int = 10
    BLOB_TARGET_GAS_PER_BLOCK: int = 393216
    BLOB_BASE_FEE_UPDATE_FRACTION: int = 3338477
    APP_NAME: str = "preconf_bidder"
    VERSION: str = "0.8.0"
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        object.__setattr__(self, "PRIVATE_KEY", validate_private_key(self.PRIVATE_KEY))
        object.__setattr__(self, "WS_ENDPOINT", validate_websocket_url(self.WS_ENDPOINT))
        if not math.isfinite(self.BID_AMOUNT) or self.BID_AMOUNT <= 0:
            raise ConfigurationError(f"BID_AMOUNT must be a positive number, got {self.BID_AMOUNT}")
        if int(Decimal(self.BID_AMOUNT) * WEI_PER_ETH) == 0:
            raise ConfigurationError(f"BID_AMOUNT {self.BID_AMOUNT} ETH is below one wei")
        if not math.isfinite(self.BID_AMOUNT_STD_DEV_PERCENTAGE) or self.BID_AMOUNT_STD_DEV_PERCENTAGE < 0:
            raise ConfigurationError(
                f"BID_AMOUNT_STD_DEV_PERCENTAGE must be a non-negative number, got {self.BID_AMOUNT_STD_DEV_PERCENTAGE}"
            )
        if self.OFFSET < 0:
            raise ConfigurationError(f"OFFSET cannot be negative, got {self.OFFSET}")
        if self.PRIORITY_FEE < 0:
            raise ConfigurationError(f"PRIORITY_FEE cannot be negative, got {self.PRIORITY_FEE}")
        if not 0 <= self.NUM_BLOB <= MAX_BLOBS_PER_TRANSACTION:
            raise ConfigurationError(
                f"NUM_BLOB must be between 0 and {MAX_BLOBS_PER_TRANSACTION}, got {self.NUM_BLOB}"
            )
        if self.DEFAULT_TIMEOUT <= 0:
            raise ConfigurationError("DEFAULT_TIMEOUT must be positive")
        if self.RUN_DURATION_MINUTES < 0:
            raise ConfigurationError("RUN_DURATION_MINUTES cannot be negative")
        if self.DECAY_DURATION_MS <= 0:
            raise ConfigurationError("DECAY_DURATION_MS must be positive")

    @classmethod
    def load(
        cls,
        env_file: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Configuration":
        """
        Load settings from an optional ``.env`` file and the environment.

        :param env_file: Path of the ``.env`` file, falls back to ``ENV_FILE``.
        :param overrides: Values that win over the environment, ``None`` entries are ignored.
        :return: Validated configuration.
        """
        try:
            env_file = env_file or os.getenv("ENV_FILE")
            if env_file:
                if not dotenv.load_dotenv(env_file):
                    logger.warning(f"Could not load env file {env_file}, using process environment ⚠️")
            else:
                dotenv.load_dotenv()

            defaults = cls.__dataclass_fields__
            values: Dict[str, Any] = {
                "PRIVATE_KEY": _get_env_variable("PRIVATE_KEY", ""),
                "WS_ENDPOINT": _get_env_variable("WS_ENDPOINT", defaults["WS_ENDPOINT"].default),
                "RPC_ENDPOINT": _get_env_variable("RPC_ENDPOINT", defaults["RPC_ENDPOINT"].default),
                "SERVER_ADDRESS": _get_env_variable("SERVER_ADDRESS", defaults["SERVER_ADDRESS"].default),
                "USE_PAYLOAD": _get_env_bool("USE_PAYLOAD", defaults["USE_PAYLOAD"].default),
                "OFFSET": _get_env_int("OFFSET", defaults["OFFSET"].default),
                "BID_AMOUNT": _get_env_float("BID_AMOUNT", defaults["BID_AMOUNT"].default),
                "BID_AMOUNT_STD_DEV_PERCENTAGE": _get_env_float(
                    "BID_AMOUNT_STD_DEV_PERCENTAGE", defaults["BID_AMOUNT_STD_DEV_PERCENTAGE"].default
                ),
                "PRIORITY_FEE": _get_env_int("PRIORITY_FEE", defaults["PRIORITY_FEE"].default),
                "NUM_BLOB": _get_env_int("NUM_BLOB", defaults["NUM_BLOB"].default),
                "DEFAULT_TIMEOUT": _get_env_seconds("DEFAULT_TIMEOUT", defaults["DEFAULT_TIMEOUT"].default),
                "RUN_DURATION_MINUTES": _get_env_int(
                    "RUN_DURATION_MINUTES", defaults["RUN_DURATION_MINUTES"].default
                ),
                "DECAY_DURATION_MS": _get_env_int("DECAY_DURATION_MS", defaults["DECAY_DURATION_MS"].default),
                "TRANSFER_VALUE_WEI": _get_env_int("TRANSFER_VALUE_WEI", defaults["TRANSFER_VALUE_WEI"].default),
                "GAS_LIMIT": _get_env_int("GAS_LIMIT", defaults["GAS_LIMIT"].default),
                "BLOB_FEE_MARGIN_PERCENT": _get_env_int(
                    "BLOB_FEE_MARGIN_PERCENT", defaults["BLOB_FEE_MARGIN_PERCENT"].default
                ),
                "BLOB_TARGET_GAS_PER_BLOCK": _get_env_int(
                    "BLOB_TARGET_GAS_PER_BLOCK", defaults["BLOB_TARGET_GAS_PER_BLOCK"].default
                ),
                "BLOB_BASE_FEE_UPDATE_FRACTION": _get_env_int(
                    "BLOB_BASE_FEE_UPDATE_FRACTION", defaults["BLOB_BASE_FEE_UPDATE_FRACTION"].default
                ),
                "APP_NAME": _get_env_variable("APP_NAME", defaults["APP_NAME"].default),
                "VERSION": _get_env_variable("VERSION", defaults["VERSION"].default),
                "LOG_LEVEL": _get_env_variable("LOG_LEVEL", defaults["LOG_LEVEL"].default).upper(),
            }
            known = {f.name for f in fields(cls)}
            for name, value in (overrides or {}).items():
                if name not in known:
                    raise ConfigurationError(f"Unknown configuration option: {name}")
                if value is not None:
                    values[name] = value
            return cls(**values)
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            raise

    @property
    def run_duration_seconds(self) -> Optional[float]:
        """Run duration in seconds, or ``None`` when the bidder runs until stopped."""
        if self.RUN_DURATION_MINUTES > 0:
            return self.RUN_DURATION_MINUTES * 60.0
        return None

    def summary(self) -> Dict[str, Any]:
        """Loggable view with endpoints masked and the key hidden."""
        values = asdict(self)
        values["PRIVATE_KEY"] = "provided (hidden)"
        for name in ("WS_ENDPOINT", "RPC_ENDPOINT", "SERVER_ADDRESS"):
            values[name] = mask_endpoint(values[name])
        return values
