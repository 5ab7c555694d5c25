"""
Configuration for the transaction sender.

Two layers:

- Runtime models (``ConnectionContext``, ``TransactionConfig`` and the fee
  settings) bundled into a ``TxSenderConfig`` that is passed by reference into
  every pipeline stage. A process-wide default instance backs the ``set_*``
  functions; tests and embedders can pass their own instance instead.
- Environment settings (``TxSenderSettings``) loaded with pydantic-settings from
  ``TX_SENDER_*`` variables or a ``.env`` file, applied via
  ``configure_from_settings``.

Usage:
    from tx_sender import set_rpc, set_priority_fee_setting, DynamicFee

    await set_rpc("https://api.mainnet-beta.solana.com")
    set_priority_fee_setting(DynamicFee(max_cap_lamports=100_000))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConnectionNotInitializedError, InvalidConfigError
from .logger import get_logger
from .percentile import Percentile
from .rpc import DEFAULT_REQUEST_TIMEOUT, RpcAdapter

logger = get_logger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MAX_COMPUTE_UNITS = 1_400_000
DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER = 1.1
DEFAULT_PRIORITY_FEE_MAX_CAP_LAMPORTS = 4_000_000
DEFAULT_JITO_TIP_MAX_CAP_LAMPORTS = 4_000_000
DEFAULT_CONFIRMATION_TIMEOUT_MS = 90_000

JITO_TIP_FLOOR_URL = "https://bundles.jito.wtf/api/v1/bundles/tip_floor"


# =============================================================================
# ENUMS
# =============================================================================

class Network(str, Enum):
    """Solana clusters, identified by genesis hash."""
    MAINNET = "mainnet-beta"
    DEVNET = "devnet"
    TESTNET = "testnet"
    UNKNOWN = "unknown"


GENESIS_HASHES = {
    "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d": Network.MAINNET,
    "EtWTRABZaYq6iMfeYKouRu166VU2xqa1wcaWoxPkrZBG": Network.DEVNET,
    "4uhcVJyU9pJkvQyS88uRDiswHXSCkY3zQawwpjk2NsNY": Network.TESTNET,
}


def network_from_genesis_hash(genesis_hash: str) -> Network:
    return GENESIS_HASHES.get(genesis_hash, Network.UNKNOWN)


class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FeeMode(str, Enum):
    NONE = "none"
    EXACT = "exact"
    DYNAMIC = "dynamic"


# =============================================================================
# FEE SETTINGS
# =============================================================================

class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class NoFee(_FrozenModel):
    """Pay nothing."""
    type: Literal["none"] = "none"


class ExactFee(_FrozenModel):
    """Pay a fixed amount in lamports for the whole transaction."""
    type: Literal["exact"] = "exact"
    amount_lamports: int = Field(..., ge=0, description="Total amount in lamports")


class DynamicFee(_FrozenModel):
    """Pay what recent network data suggests, optionally capped."""
    type: Literal["dynamic"] = "dynamic"
    max_cap_lamports: Optional[int] = Field(
        default=None,
        ge=0,
        description="Upper bound in lamports for the whole transaction",
    )
    percentile: Percentile = Field(
        default=Percentile.P50,
        description="Percentile of recent observations to pay",
    )


FeeSetting = Annotated[Union[NoFee, ExactFee, DynamicFee], Field(discriminator="type")]


class DynamicComputeUnits(_FrozenModel):
    """Size the compute-unit limit by simulating the transaction."""
    type: Literal["dynamic"] = "dynamic"


class ExactComputeUnits(_FrozenModel):
    """Use a fixed compute-unit estimate and skip simulation."""
    type: Literal["exact"] = "exact"
    units: int = Field(..., gt=0, le=MAX_COMPUTE_UNITS)


ComputeUnitLimitStrategy = Annotated[
    Union[DynamicComputeUnits, ExactComputeUnits], Field(discriminator="type")
]


# =============================================================================
# RUNTIME CONFIGURATION
# =============================================================================

class ConnectionContext(_FrozenModel):
    """Immutable connection settings for one configured session."""

    rpc_url: str = Field(..., min_length=1, description="HTTP(S) JSON-RPC endpoint")

    ws_url: Optional[str] = Field(
        default=None,
        description="WebSocket endpoint; enables subscription-based confirmation",
    )

    supports_percentile_query: bool = Field(
        default=False,
        description="Endpoint accepts the percentile extension of getRecentPrioritizationFees",
    )

    network: Network = Field(default=Network.UNKNOWN)

    genesis_hash: Optional[str] = Field(default=None)

    poll_interval_ms: int = Field(
        default=0,
        ge=0,
        description="Status polling interval; 0 disables polling",
    )

    resend_on_poll: bool = Field(
        default=True,
        description="Resend the raw transaction on every unconfirmed poll",
    )

    confirmation_timeout_ms: int = Field(default=DEFAULT_CONFIRMATION_TIMEOUT_MS, gt=0)

    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("rpc_url must start with http:// or https://")
        return v

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("ws_url must start with ws:// or wss://")
        return v

    @property
    def is_mainnet(self) -> bool:
        return self.network == Network.MAINNET


class TransactionConfig(_FrozenModel):
    """Fee, tip and compute-budget policy applied to every build."""

    priority_fee: FeeSetting = Field(
        default_factory=lambda: DynamicFee(max_cap_lamports=DEFAULT_PRIORITY_FEE_MAX_CAP_LAMPORTS)
    )

    jito_tip: FeeSetting = Field(
        default_factory=lambda: DynamicFee(max_cap_lamports=DEFAULT_JITO_TIP_MAX_CAP_LAMPORTS)
    )

    compute_unit_margin_multiplier: float = Field(
        default=DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER,
        gt=1.0,
        description="Multiplier applied to the estimated compute units",
    )

    compute_unit_limit: ComputeUnitLimitStrategy = Field(default_factory=DynamicComputeUnits)

    jito_tip_floor_url: str = Field(default=JITO_TIP_FLOOR_URL)


@dataclass
class TxSenderConfig:
    """Explicit configuration threaded through the pipeline."""
    connection: Optional[ConnectionContext] = None
    transaction: TransactionConfig = field(default_factory=TransactionConfig)

    def require_connection(self) -> ConnectionContext:
        if self.connection is None:
            raise ConnectionNotInitializedError()
        return self.connection

    def update_transaction(self, **changes: Any) -> TransactionConfig:
        """Replace fields of the transaction config, validating the result."""
        values = {**dict(self.transaction), **changes}
        try:
            self.transaction = TransactionConfig(**values)
        except PydanticValidationError as e:
            key = ", ".join(changes)
            raise InvalidConfigError(
                f"Invalid value for {key}: {e.errors()[0]['msg']}",
                config_key=key,
                config_value=next(iter(changes.values()), None),
            ) from e
        return self.transaction


_config = TxSenderConfig()


def get_config() -> TxSenderConfig:
    """Return the process-wide default configuration."""
    return _config


def reset_config() -> TxSenderConfig:
    """Discard the process-wide configuration (used between tests)."""
    global _config
    _config = TxSenderConfig()
    return _config


def _target(config: Optional[TxSenderConfig]) -> TxSenderConfig:
    return config if config is not None else _config


# =============================================================================
# SETTERS
# =============================================================================

async def set_rpc(
    rpc_url: str,
    *,
    supports_percentile_query: bool = False,
    poll_interval_ms: int = 0,
    resend_on_poll: bool = True,
    ws_url: Optional[str] = None,
    confirmation_timeout_ms: int = DEFAULT_CONFIRMATION_TIMEOUT_MS,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    network: Optional[Network] = None,
    config: Optional[TxSenderConfig] = None,
    rpc: Optional[RpcAdapter] = None,
) -> ConnectionContext:
    """
    Configure the RPC connection.

    When ``network`` is omitted the cluster is identified from its genesis
    hash, which costs one round trip. The previous connection context is
    replaced wholesale.

    Raises:
        InvalidConfigError: If the endpoint or options are malformed
        RPCError: If the genesis hash cannot be fetched
    """
    target = _target(config)

    try:
        context = ConnectionContext(
            rpc_url=rpc_url,
            ws_url=ws_url,
            supports_percentile_query=supports_percentile_query,
            network=network or Network.UNKNOWN,
            poll_interval_ms=poll_interval_ms,
            resend_on_poll=resend_on_poll,
            confirmation_timeout_ms=confirmation_timeout_ms,
            request_timeout=request_timeout,
        )
    except PydanticValidationError as e:
        raise InvalidConfigError(
            f"Invalid RPC configuration: {e.errors()[0]['msg']}",
            config_key="rpc_url",
            config_value=rpc_url,
        ) from e

    if network is None:
        genesis_hash = await _fetch_genesis_hash(context, rpc)
        context = context.model_copy(update={
            "genesis_hash": genesis_hash,
            "network": network_from_genesis_hash(genesis_hash),
        })

    target.connection = context
    logger.info(f"RPC configured: {rpc_url} ({context.network.value})")
    return context


async def _fetch_genesis_hash(context: ConnectionContext, rpc: Optional[RpcAdapter]) -> str:
    if rpc is not None:
        return await rpc.get_genesis_hash()
    async with RpcAdapter.from_context(context) as adapter:
        return await adapter.get_genesis_hash()


def set_priority_fee_setting(
    setting: FeeSetting,
    config: Optional[TxSenderConfig] = None,
) -> TransactionConfig:
    return _target(config).update_transaction(priority_fee=setting)


def set_jito_tip_setting(
    setting: FeeSetting,
    config: Optional[TxSenderConfig] = None,
) -> TransactionConfig:
    return _target(config).update_transaction(jito_tip=setting)


def set_compute_unit_margin_multiplier(
    multiplier: float,
    config: Optional[TxSenderConfig] = None,
) -> TransactionConfig:
    """Set the compute-unit margin; must be strictly greater than 1.0."""
    return _target(config).update_transaction(compute_unit_margin_multiplier=multiplier)


def set_compute_unit_limit_strategy(
    strategy: ComputeUnitLimitStrategy,
    config: Optional[TxSenderConfig] = None,
) -> TransactionConfig:
    return _target(config).update_transaction(compute_unit_limit=strategy)


# =============================================================================
# ENVIRONMENT SETTINGS
# =============================================================================

class BaseConfig(BaseSettings):
    """Base configuration with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


class LoggingSettings(BaseConfig):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TX_SENDER_LOG_",
        env_file=".env",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )

    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format",
    )

    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log date format",
    )

    file_enabled: bool = Field(
        default=False,
        description="Enable file logging",
    )

    file_path: Path = Field(
        default=Path("logs/tx_sender.log"),
        description="Log file path",
    )

    file_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        ge=1024,
        description="Max log file size in bytes",
    )

    file_backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of backup log files",
    )


class TxSenderSettings(BaseConfig):
    """Transaction sender settings read from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="TX_SENDER_",
        env_file=".env",
        extra="ignore",
    )

    rpc_url: Optional[str] = Field(
        default=None,
        description="JSON-RPC endpoint; set_rpc is skipped when empty",
    )

    ws_url: Optional[str] = Field(
        default=None,
        description="WebSocket endpoint for confirmation subscriptions",
    )

    network: Optional[Network] = Field(
        default=None,
        description="Cluster; detected from the genesis hash when empty",
    )

    supports_percentile_query: bool = Field(default=False)

    poll_interval_ms: int = Field(default=0, ge=0)

    resend_on_poll: bool = Field(default=True)

    confirmation_timeout_ms: int = Field(default=DEFAULT_CONFIRMATION_TIMEOUT_MS, gt=0)

    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    priority_fee_mode: FeeMode = Field(default=FeeMode.DYNAMIC)

    priority_fee_lamports: int = Field(
        default=0,
        ge=0,
        description="Exact priority fee in lamports (exact mode)",
    )

    priority_fee_max_cap_lamports: Optional[int] = Field(
        default=DEFAULT_PRIORITY_FEE_MAX_CAP_LAMPORTS,
        ge=0,
    )

    priority_fee_percentile: Percentile = Field(default=Percentile.P50)

    jito_tip_mode: FeeMode = Field(default=FeeMode.DYNAMIC)

    jito_tip_lamports: int = Field(default=0, ge=0)

    jito_tip_max_cap_lamports: Optional[int] = Field(
        default=DEFAULT_JITO_TIP_MAX_CAP_LAMPORTS,
        ge=0,
    )

    jito_tip_percentile: Percentile = Field(default=Percentile.P50)

    jito_tip_floor_url: str = Field(default=JITO_TIP_FLOOR_URL)

    compute_unit_margin_multiplier: float = Field(
        default=DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER,
        gt=1.0,
    )

    compute_units: Optional[int] = Field(
        default=None,
        gt=0,
        le=MAX_COMPUTE_UNITS,
        description="Fixed compute-unit estimate; simulation is used when empty",
    )

    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("rpc_url", "ws_url", "network", mode="before")
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        if v == "":
            return None
        return v

    @model_validator(mode="after")
    def validate_exact_modes(self) -> "TxSenderSettings":
        if self.priority_fee_mode == FeeMode.EXACT and self.priority_fee_lamports == 0:
            raise ValueError("priority_fee_lamports required when priority_fee_mode is exact")
        if self.jito_tip_mode == FeeMode.EXACT and self.jito_tip_lamports == 0:
            raise ValueError("jito_tip_lamports required when jito_tip_mode is exact")
        return self

    def priority_fee_setting(self) -> Union[NoFee, ExactFee, DynamicFee]:
        return _fee_setting(
            self.priority_fee_mode,
            self.priority_fee_lamports,
            self.priority_fee_max_cap_lamports,
            self.priority_fee_percentile,
        )

    def jito_tip_setting(self) -> Union[NoFee, ExactFee, DynamicFee]:
        return _fee_setting(
            self.jito_tip_mode,
            self.jito_tip_lamports,
            self.jito_tip_max_cap_lamports,
            self.jito_tip_percentile,
        )

    def transaction_config(self) -> TransactionConfig:
        if self.compute_units is not None:
            strategy = ExactComputeUnits(units=self.compute_units)
        else:
            strategy = DynamicComputeUnits()
        return TransactionConfig(
            priority_fee=self.priority_fee_setting(),
            jito_tip=self.jito_tip_setting(),
            compute_unit_margin_multiplier=self.compute_unit_margin_multiplier,
            compute_unit_limit=strategy,
            jito_tip_floor_url=self.jito_tip_floor_url,
        )


def _fee_setting(
    mode: FeeMode,
    lamports: int,
    max_cap_lamports: Optional[int],
    percentile: Percentile,
) -> Union[NoFee, ExactFee, DynamicFee]:
    if mode == FeeMode.EXACT:
        return ExactFee(amount_lamports=lamports)
    if mode == FeeMode.DYNAMIC:
        return DynamicFee(max_cap_lamports=max_cap_lamports, percentile=percentile)
    return NoFee()


@lru_cache()
def get_settings() -> TxSenderSettings:
    """Load settings from the environment once per process."""
    return TxSenderSettings()


def reload_settings() -> TxSenderSettings:
    get_settings.cache_clear()
    return get_settings()


async def configure_from_settings(
    settings: Optional[TxSenderSettings] = None,
    config: Optional[TxSenderConfig] = None,
    rpc: Optional[RpcAdapter] = None,
) -> TxSenderConfig:
    """
    Apply environment settings to ``config`` (the process default if omitted).

    Nothing is changed unless the connection is configured successfully.
    """
    settings = settings or get_settings()
    target = _target(config)
    transaction = settings.transaction_config()

    if settings.rpc_url:
        await set_rpc(
            settings.rpc_url,
            supports_percentile_query=settings.supports_percentile_query,
            poll_interval_ms=settings.poll_interval_ms,
            resend_on_poll=settings.resend_on_poll,
            ws_url=settings.ws_url,
            confirmation_timeout_ms=settings.confirmation_timeout_ms,
            request_timeout=settings.request_timeout,
            network=settings.network,
            config=target,
            rpc=rpc,
        )
    else:
        logger.warning("TX_SENDER_RPC_URL not set; call set_rpc() before building transactions")

    target.transaction = transaction
    return target


__all__ = [
    "MAX_COMPUTE_UNITS",
    "DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER",
    "JITO_TIP_FLOOR_URL",
    "Network",
    "LogLevel",
    "FeeMode",
    "NoFee",
    "ExactFee",
    "DynamicFee",
    "FeeSetting",
    "DynamicComputeUnits",
    "ExactComputeUnits",
    "ComputeUnitLimitStrategy",
    "ConnectionContext",
    "TransactionConfig",
    "TxSenderConfig",
    "get_config",
    "reset_config",
    "set_rpc",
    "set_priority_fee_setting",
    "set_jito_tip_setting",
    "set_compute_unit_margin_multiplier",
    "set_compute_unit_limit_strategy",
    "network_from_genesis_hash",
    "LoggingSettings",
    "TxSenderSettings",
    "get_settings",
    "reload_settings",
    "configure_from_settings",
]
