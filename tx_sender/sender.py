"""
Transaction submission and confirmation.

Confirmation mode follows the connection context:

- ``ws_url`` set: subscribe to the signature before sending and wait for the
  notification.
- ``poll_interval_ms > 0``: poll ``getSignatureStatuses``, resending the raw
  transaction on each unconfirmed poll when ``resend_on_poll`` is set.
- otherwise: return as soon as the node accepts the transaction.

Both waiting modes are bounded by ``confirmation_timeout_ms``. In subscription
mode the bound also covers connecting and the subscription acknowledgement.
"""

import asyncio
import base64
import binascii
from typing import Awaitable, Optional, Union

from solana.rpc.commitment import Confirmed
from solana.rpc.websocket_api import connect
from solders.rpc.responses import SignatureNotification
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .config import ConnectionContext, TxSenderConfig, get_config
from .exceptions import (
    ConfirmationTimeoutError,
    InvalidTransactionError,
    RPCError,
    TransactionFailedError,
)
from .logger import get_logger
from .rpc import RpcAdapter, SignatureStatus, rpc_scope
from .signer import missing_signers

logger = get_logger(__name__)

TransactionLike = Union[VersionedTransaction, bytes, str]


def encode_wire_transaction(tx: VersionedTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


def decode_wire_transaction(value: TransactionLike) -> VersionedTransaction:
    if isinstance(value, VersionedTransaction):
        return value

    if isinstance(value, str):
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidTransactionError("Transaction is not valid base64") from e
    elif isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        raise InvalidTransactionError(f"Unsupported transaction type: {type(value).__name__}")

    try:
        return VersionedTransaction.from_bytes(raw)
    except Exception as e:
        raise InvalidTransactionError(f"Malformed transaction bytes: {e}") from e


def validate_transaction(tx: VersionedTransaction) -> None:
    missing = missing_signers(tx)
    if missing:
        raise InvalidTransactionError(
            f"Transaction is missing {len(missing)} required signature(s)",
            missing_signers=[str(key) for key in missing]
        )


async def send_transaction(
    transaction: TransactionLike,
    *,
    config: Optional[TxSenderConfig] = None,
    rpc: Optional[RpcAdapter] = None
) -> Signature:
    """
    Send a fully signed transaction and wait for confirmation as configured.

    Raises:
        ConnectionNotInitializedError: If set_rpc() has not been called
        InvalidTransactionError: Malformed bytes or missing signatures
        RPCError: The node rejected the submission
        TransactionFailedError: The cluster reported an execution error
        ConfirmationTimeoutError: Confirmation not observed in time
    """
    cfg = config or get_config()
    connection = cfg.require_connection()

    tx = decode_wire_transaction(transaction)
    validate_transaction(tx)
    raw = bytes(tx)

    async with rpc_scope(connection, rpc) as client:
        if connection.ws_url:
            return await _send_with_subscription(client, connection, raw, tx.signatures[0])

        signature = await client.send_raw_transaction(raw)
        logger.info(f"Transaction sent: {signature}")

        if connection.poll_interval_ms > 0:
            await _confirm_within_timeout(
                _poll_for_confirmation(client, connection, raw, signature),
                connection,
                signature
            )

        return signature


async def _confirm_within_timeout(
    waiter: Awaitable,
    connection: ConnectionContext,
    signature: Signature
):
    timeout = connection.confirmation_timeout_ms / 1000
    try:
        return await asyncio.wait_for(waiter, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ConfirmationTimeoutError(
            f"Transaction confirmation timeout after {timeout}s: {signature}",
            transaction_signature=str(signature),
            timeout_seconds=timeout
        ) from e


async def _poll_for_confirmation(
    client: RpcAdapter,
    connection: ConnectionContext,
    raw: bytes,
    signature: Signature
) -> SignatureStatus:
    interval = connection.poll_interval_ms / 1000

    while True:
        await asyncio.sleep(interval)

        try:
            status = await client.get_signature_status(signature)
        except RPCError as e:
            logger.warning(f"Error checking transaction status: {e}")
            status = None

        if status is not None:
            if status.err:
                raise TransactionFailedError(
                    f"Transaction failed: {signature}",
                    transaction_signature=str(signature),
                    transaction_error=status.err
                )
            if status.is_confirmed:
                logger.info(f"Transaction {status.confirmation}: {signature}")
                return status

        if connection.resend_on_poll:
            try:
                await client.send_raw_transaction(raw, skip_preflight=True)
            except RPCError as e:
                logger.warning(f"Resend of {signature} failed: {e}")


async def _send_with_subscription(
    client: RpcAdapter,
    connection: ConnectionContext,
    raw: bytes,
    expected_signature: Signature
) -> Signature:
    return await _confirm_within_timeout(
        _subscribe_and_send(client, connection.ws_url, raw, expected_signature),
        connection,
        expected_signature
    )


async def _subscribe_and_send(
    client: RpcAdapter,
    ws_url: str,
    raw: bytes,
    expected_signature: Signature
) -> Signature:
    async with connect(ws_url) as websocket:
        subscription_id = None
        try:
            await websocket.signature_subscribe(expected_signature, commitment=Confirmed)
            ack = await websocket.recv()
            subscription_id = ack[0].result

            signature = await client.send_raw_transaction(raw)
            logger.info(f"Transaction sent: {signature}")
            await _wait_for_notification(websocket, signature)
            return signature
        finally:
            if subscription_id is not None:
                try:
                    await websocket.signature_unsubscribe(subscription_id)
                except Exception as e:
                    logger.warning(f"Failed to unsubscribe {subscription_id}: {e}")


async def _wait_for_notification(websocket, signature: Signature) -> None:
    async for messages in websocket:
        for message in messages:
            if not isinstance(message, SignatureNotification):
                continue
            err = getattr(message.result.value, "err", None)
            if err:
                raise TransactionFailedError(
                    f"Transaction failed: {signature}",
                    transaction_signature=str(signature),
                    transaction_error=str(err)
                )
            logger.info(f"Transaction confirmed: {signature}")
            return

    raise RPCError(
        f"Websocket closed before {signature} was confirmed",
        method_name="signatureSubscribe"
    )
