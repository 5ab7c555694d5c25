"""
Exception hierarchy for the transaction sender.

Every error raised by the pipeline derives from ``TxSenderError`` and carries:
- a unique error code for logging and debugging
- a descriptive message
- an optional context dictionary
- an ``is_recoverable`` flag telling callers whether a retry makes sense

Only ``SimulationFailedError`` and ``TipFetchFailedError`` are handled inside
the pipeline (compute-unit fallback and zero tip). Everything else reaches the
caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from datetime import datetime, timezone


# =============================================================================
# BASE EXCEPTIONS
# =============================================================================

@dataclass
class TxSenderError(Exception):
    """
    Base exception for all transaction sender errors.

    Attributes:
        message: Human-readable error description
        error_code: Unique identifier for the error type (e.g., "RPC_001")
        context: Optional dictionary with debugging information
        is_recoverable: Whether the operation can be retried
        timestamp: When the error occurred
    """
    message: str
    error_code: str = "GENERAL_001"
    context: dict[str, Any] = field(default_factory=dict)
    is_recoverable: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message with code and context."""
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" | Context: {context_str}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "is_recoverable": self.is_recoverable,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        return self.format_message()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"is_recoverable={self.is_recoverable})"
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

@dataclass
class ConfigurationError(TxSenderError):
    """Error in sender configuration."""
    error_code: str = "CONFIG_001"


@dataclass
class ConnectionNotInitializedError(ConfigurationError):
    """Configuration was read before set_rpc() was called."""
    message: str = "Connection not initialized. Call set_rpc() first"
    error_code: str = "CONFIG_002"


@dataclass
class InvalidConfigError(ConfigurationError):
    """Invalid configuration value."""
    error_code: str = "CONFIG_003"
    config_key: Optional[str] = None
    config_value: Optional[Any] = None


# =============================================================================
# RPC EXCEPTIONS
# =============================================================================

@dataclass
class RPCError(TxSenderError):
    """A remote call to the node failed."""
    error_code: str = "RPC_000"
    is_recoverable: bool = True
    rpc_endpoint: Optional[str] = None
    method_name: Optional[str] = None


@dataclass
class RPCResponseError(RPCError):
    """The node answered with a JSON-RPC error object."""
    error_code: str = "RPC_001"
    rpc_error_code: Optional[int] = None
    rpc_error_message: Optional[str] = None


@dataclass
class BlockhashNotFoundError(RPCError):
    """Recent blockhash not available."""
    error_code: str = "RPC_002"


# =============================================================================
# TRANSACTION EXCEPTIONS
# =============================================================================

@dataclass
class TransactionError(TxSenderError):
    """Base exception for transaction-related errors."""
    error_code: str = "TX_000"
    transaction_signature: Optional[str] = None


@dataclass
class TransactionBuildError(TransactionError):
    """The message could not be compiled."""
    error_code: str = "TX_001"


@dataclass
class InvalidTransactionError(TransactionError):
    """Malformed transaction bytes or missing required signatures."""
    error_code: str = "TX_002"
    missing_signers: list[str] = field(default_factory=list)


@dataclass
class SimulationFailedError(TransactionError):
    """Compute-unit simulation could not complete."""
    error_code: str = "TX_003"
    simulation_logs: list[str] = field(default_factory=list)


@dataclass
class TransactionFailedError(TransactionError):
    """The cluster reported an execution error for the transaction."""
    error_code: str = "TX_004"
    transaction_error: Optional[str] = None


@dataclass
class ConfirmationTimeoutError(TransactionError):
    """Confirmation was not observed within the configured window."""
    error_code: str = "TX_005"
    is_recoverable: bool = True
    timeout_seconds: Optional[float] = None


# =============================================================================
# JITO EXCEPTIONS
# =============================================================================

@dataclass
class TipFetchFailedError(TxSenderError):
    """The Jito tip-floor quote was unavailable."""
    error_code: str = "JITO_001"
    is_recoverable: bool = True
    status_code: Optional[int] = None
    url: Optional[str] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, TxSenderError):
        return error.is_recoverable
    return False


def wrap_exception(
    original: Exception,
    wrapper_class: type[TxSenderError],
    message: Optional[str] = None,
    **kwargs: Any
) -> TxSenderError:
    """Wrap a generic exception in a TxSenderError subclass."""
    msg = message or str(original)
    context = kwargs.pop("context", {})
    context["original_error"] = type(original).__name__
    context["original_message"] = str(original)

    return wrapper_class(
        message=msg,
        context=context,
        **kwargs
    )


ERROR_CODE_MAP: dict[str, type[TxSenderError]] = {
    "GENERAL_001": TxSenderError,
    "CONFIG_001": ConfigurationError,
    "CONFIG_002": ConnectionNotInitializedError,
    "CONFIG_003": InvalidConfigError,
    "RPC_000": RPCError,
    "RPC_001": RPCResponseError,
    "RPC_002": BlockhashNotFoundError,
    "TX_000": TransactionError,
    "TX_001": TransactionBuildError,
    "TX_002": InvalidTransactionError,
    "TX_003": SimulationFailedError,
    "TX_004": TransactionFailedError,
    "TX_005": ConfirmationTimeoutError,
    "JITO_001": TipFetchFailedError,
}


__all__ = [
    "TxSenderError", "ConfigurationError", "ConnectionNotInitializedError",
    "InvalidConfigError", "RPCError", "RPCResponseError", "BlockhashNotFoundError",
    "TransactionError", "TransactionBuildError", "InvalidTransactionError",
    "SimulationFailedError", "TransactionFailedError", "ConfirmationTimeoutError",
    "TipFetchFailedError", "is_retryable", "wrap_exception", "ERROR_CODE_MAP",
]
