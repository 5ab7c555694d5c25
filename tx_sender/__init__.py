"""
Solana transaction assembly and fee estimation.

Builds versioned transactions with compute-budget sizing, priority fees and
Jito tips, signs them with whatever signers are available and submits them
with optional confirmation.
"""

import logging

from .config import (
    ComputeUnitLimitStrategy,
    ConnectionContext,
    DynamicComputeUnits,
    DynamicFee,
    ExactComputeUnits,
    ExactFee,
    FeeSetting,
    Network,
    NoFee,
    TransactionConfig,
    TxSenderConfig,
    TxSenderSettings,
    configure_from_settings,
    get_config,
    get_settings,
    reset_config,
    set_compute_unit_limit_strategy,
    set_compute_unit_margin_multiplier,
    set_jito_tip_setting,
    set_priority_fee_setting,
    set_rpc,
)
from .exceptions import (
    BlockhashNotFoundError,
    ConfigurationError,
    ConfirmationTimeoutError,
    ConnectionNotInitializedError,
    InvalidConfigError,
    InvalidTransactionError,
    RPCError,
    RPCResponseError,
    SimulationFailedError,
    TipFetchFailedError,
    TransactionBuildError,
    TransactionError,
    TransactionFailedError,
    TxSenderError,
)
from .jito import JitoTipEstimator, close_tip_estimators
from .logger import setup_logging
from .percentile import Percentile
from .rpc import RpcAdapter
from .sender import send_transaction
from .signer import (
    AddressOnlySigner,
    KeypairSigner,
    TransactionSigner,
    add_signatures,
    as_signer,
    is_fully_signed,
)
from .transaction import (
    build_and_send_transaction,
    build_transaction,
    build_transaction_message,
)

__version__ = "1.0.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "set_rpc",
    "set_priority_fee_setting",
    "set_jito_tip_setting",
    "set_compute_unit_margin_multiplier",
    "set_compute_unit_limit_strategy",
    "get_config",
    "reset_config",
    "configure_from_settings",
    "get_settings",
    "build_transaction",
    "build_transaction_message",
    "build_and_send_transaction",
    "send_transaction",
    "setup_logging",
    "NoFee",
    "ExactFee",
    "DynamicFee",
    "FeeSetting",
    "Percentile",
    "DynamicComputeUnits",
    "ExactComputeUnits",
    "ComputeUnitLimitStrategy",
    "ConnectionContext",
    "TransactionConfig",
    "TxSenderConfig",
    "TxSenderSettings",
    "Network",
    "RpcAdapter",
    "JitoTipEstimator",
    "close_tip_estimators",
    "TransactionSigner",
    "KeypairSigner",
    "AddressOnlySigner",
    "as_signer",
    "add_signatures",
    "is_fully_signed",
    "TxSenderError",
    "ConfigurationError",
    "ConnectionNotInitializedError",
    "InvalidConfigError",
    "RPCError",
    "RPCResponseError",
    "BlockhashNotFoundError",
    "TransactionError",
    "TransactionBuildError",
    "InvalidTransactionError",
    "SimulationFailedError",
    "TransactionFailedError",
    "ConfirmationTimeoutError",
    "TipFetchFailedError",
]
