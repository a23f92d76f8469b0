import logging

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import async_timeout

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_account.signers.local import LocalAccount
from eth_keys import keys

from .exceptions import ChainReadError, SigningError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signing_Identity:
    """A key pair, its address and the chain ID every signature is bound to."""
    account: LocalAccount = field(repr=False)
    chain_id: int
    public_key: keys.PublicKey = field(repr=False)

    @property
    def address(self) -> str:
        return self.account.address

    @classmethod
    def from_private_key(cls, private_key_hex: str, chain_id: int) -> "Signing_Identity":
        try:
            account = Account.from_key(private_key_hex)
            public_key = keys.PrivateKey(bytes(account.key)).public_key
        except Exception as e:
            raise SigningError(f"Invalid private key: {e}") from e
        return cls(account=account, chain_id=chain_id, public_key=public_key)

    def sign(self, transaction: Dict[str, Any], blobs: Optional[Sequence[bytes]] = None) -> SignedTransaction:
        """
        Sign ``transaction`` with this identity's key.

        :param transaction: Transaction fields, ``chainId`` must match the bound chain.
        :param blobs: Raw blob payloads for a type-3 transaction.
        :return: The signed transaction.
        :raises SigningError: On a chain mismatch, a corrupted key or a signer failure.
        """
        if transaction.get("chainId") != self.chain_id:
            raise SigningError(
                f"Transaction chain ID {transaction.get('chainId')} does not match signer chain ID {self.chain_id}"
            )
        if self.public_key.to_checksum_address() != self.account.address:
            raise SigningError("Signing key does not match its derived address")
        try:
            return self.account.sign_transaction(transaction, blobs=list(blobs) if blobs else None)
        except Exception as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e


async def authenticate_address(private_key_hex: str, handle) -> Signing_Identity:
    """
    Build the signing identity and bind it to the chain ``handle`` is connected to.

    :param private_key_hex: Hex encoded secret key.
    :param handle: Open chain handle used to read the chain ID once.
    :return: Signing identity.
    """
    try:
        async with async_timeout.timeout(handle.timeout):
            chain_id = await handle.chain_id()
    except Exception as e:
        raise ChainReadError(f"Failed to fetch chain ID: {e}") from e
    identity = Signing_Identity.from_private_key(private_key_hex, chain_id)
    logger.info(f"Authenticated address {identity.address} on chain {chain_id} ✅")
    return identity
