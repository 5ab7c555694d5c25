"""
Signer capabilities.

A ``KeypairSigner`` holds private key material and produces real signatures.
An ``AddressOnlySigner`` only carries the address; its slot is left holding
the default signature so an external wallet can countersign later.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Union

from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import InvalidTransactionError
from .logger import get_logger

logger = get_logger(__name__)


class TransactionSigner(ABC):

    @property
    @abstractmethod
    def pubkey(self) -> Pubkey:
        ...

    @property
    @abstractmethod
    def can_sign(self) -> bool:
        ...

    @abstractmethod
    def sign_message(self, message_bytes: bytes) -> Optional[Signature]:
        """Return a signature over ``message_bytes``, or None if this signer cannot sign."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.pubkey})"


class KeypairSigner(TransactionSigner):

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def can_sign(self) -> bool:
        return True

    def sign_message(self, message_bytes: bytes) -> Optional[Signature]:
        return self._keypair.sign_message(message_bytes)


class AddressOnlySigner(TransactionSigner):

    def __init__(self, address: Pubkey):
        self._address = address

    @property
    def pubkey(self) -> Pubkey:
        return self._address

    @property
    def can_sign(self) -> bool:
        return False

    def sign_message(self, message_bytes: bytes) -> Optional[Signature]:
        return None


SignerLike = Union[TransactionSigner, Keypair, Pubkey]


def as_signer(value: SignerLike) -> TransactionSigner:
    if isinstance(value, TransactionSigner):
        return value
    if isinstance(value, Keypair):
        return KeypairSigner(value)
    if isinstance(value, Pubkey):
        return AddressOnlySigner(value)
    raise TypeError(f"Cannot use {type(value).__name__} as a transaction signer")


def _index_signers(signers: Iterable[SignerLike]) -> Dict[Pubkey, TransactionSigner]:
    by_key: Dict[Pubkey, TransactionSigner] = {}
    for value in signers:
        signer = as_signer(value)
        existing = by_key.get(signer.pubkey)
        if existing is None or (signer.can_sign and not existing.can_sign):
            by_key[signer.pubkey] = signer
    return by_key


def _required_signers(message) -> List[Pubkey]:
    return list(message.account_keys[:message.header.num_required_signatures])


def sign_transaction_message(
    message: MessageV0,
    signers: Iterable[SignerLike]
) -> VersionedTransaction:
    """
    Sign a compiled message with every signer that can sign.

    Each required signer slot gets a real signature when a capable signer is
    available and the default placeholder otherwise, so the result may be
    partially signed.
    """
    by_key = _index_signers(signers)
    message_bytes = to_bytes_versioned(message)

    signatures = []
    for key in _required_signers(message):
        signer = by_key.get(key)
        signature = signer.sign_message(message_bytes) if signer is not None else None
        signatures.append(signature if signature is not None else Signature.default())

    transaction = VersionedTransaction.populate(message, signatures)

    missing = missing_signers(transaction)
    if missing:
        logger.debug(f"Transaction partially signed, awaiting {len(missing)} signature(s)")
    return transaction


def add_signatures(
    transaction: VersionedTransaction,
    signers: Iterable[SignerLike]
) -> VersionedTransaction:
    """Fill empty signature slots of a partially signed transaction."""
    message = transaction.message
    by_key = _index_signers(signers)
    message_bytes = to_bytes_versioned(message)

    signatures = list(transaction.signatures)
    required = _required_signers(message)
    if len(signatures) != len(required):
        raise InvalidTransactionError(
            f"Transaction carries {len(signatures)} signatures, expected {len(required)}"
        )

    for i, key in enumerate(required):
        if signatures[i] != Signature.default():
            continue
        signer = by_key.get(key)
        if signer is None:
            continue
        signature = signer.sign_message(message_bytes)
        if signature is not None:
            signatures[i] = signature

    return VersionedTransaction.populate(message, signatures)


def missing_signers(transaction: VersionedTransaction) -> List[Pubkey]:
    required = _required_signers(transaction.message)
    signatures = list(transaction.signatures)
    missing = []
    for i, key in enumerate(required):
        if i >= len(signatures) or signatures[i] == Signature.default():
            missing.append(key)
    return missing


def is_fully_signed(transaction: VersionedTransaction) -> bool:
    return not missing_signers(transaction)
