"""
Wallet signature recovery for EIP-191 personal messages.
"""

import logging

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

logger = logging.getLogger(__name__)


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address.strip())


def recover_signer(message: str, signature: str) -> str:
    """
    Recover the address that signed a text message.

    Args:
        message: The canonical message that was signed
        signature: 0x-prefixed 65-byte hex signature

    Returns:
        str: The checksummed signer address

    Raises:
        Exception: Whatever eth_account raises for an unrecoverable signature
    """
    message_hash = encode_defunct(text=message)
    recovered_address = Account.recover_message(message_hash, signature=signature.strip())
    return to_checksum(recovered_address)
