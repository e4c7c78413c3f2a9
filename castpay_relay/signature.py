"""
Personal-message signatures over transfer intents.

The user signs the canonical string

    CastPay:<sender>:<recipient>:<amountBaseUnits>:<nonce>

with their wallet (EIP-191 personal_sign). The relay recovers the signer and
requires it to be the sender.
"""

from typing import Union

from eth_account import Account
from eth_account.messages import encode_defunct
import structlog

logger = structlog.get_logger()

MESSAGE_PREFIX = "CastPay"


def build_transfer_message(
    sender: str,
    recipient: str,
    amount_base_units: int,
    nonce: int,
) -> str:
    """Build the canonical message a sender signs to authorize a transfer."""
    return f"{MESSAGE_PREFIX}:{sender}:{recipient}:{amount_base_units}:{nonce}"


def sign_transfer_intent(
    private_key: str,
    sender: str,
    recipient: str,
    amount_base_units: int,
    nonce: int,
) -> str:
    """
    Sign a transfer intent with personal_sign.

    Returns:
        65-byte signature (r || s || v) as 0x-prefixed hex
    """
    message = build_transfer_message(sender, recipient, amount_base_units, nonce)
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def verify_transfer_signature(
    sender: str,
    recipient: str,
    amount_base_units: int,
    nonce: int,
    signature: Union[str, bytes],
) -> bool:
    """
    Check that `signature` was produced by `sender` over the transfer message.

    Returns False for malformed signatures, wrong lengths and any recovery
    failure; never raises.
    """
    message = build_transfer_message(sender, recipient, amount_base_units, nonce)
    try:
        sig_bytes = _signature_bytes(signature)
        if len(sig_bytes) != 65:
            return False
        recovered = Account.recover_message(encode_defunct(text=message), signature=sig_bytes)
    except Exception as e:
        logger.debug("signature_recovery_failed", sender=sender, error=str(e))
        return False

    return recovered.lower() == sender.lower()


def _signature_bytes(signature: Union[str, bytes]) -> bytes:
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    sig_hex = signature.strip()
    if sig_hex.startswith(("0x", "0X")):
        sig_hex = sig_hex[2:]
    return bytes.fromhex(sig_hex)
