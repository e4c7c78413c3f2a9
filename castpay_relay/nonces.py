"""
Per-sender nonce tracking for replay protection.

Nonces live in process memory and reset on restart. They do not order
on-chain transactions (the relay wallet's own nonce does that); they only
stop the same signed intent from being relayed twice.
"""

import asyncio

import structlog

logger = structlog.get_logger()


class NonceTracker:
    """
    Last-accepted nonce per sender address.

    A sender's counter starts at 0 and moves to nonce + 1 once a transfer
    signed with that nonce succeeds. In strict mode an intent is only
    accepted if it carries exactly the current value and no other in-flight
    transfer holds it.
    """

    def __init__(self, strict: bool = True):
        self.strict = strict
        self._nonces: dict[str, int] = {}
        self._reserved: dict[str, set[int]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(sender: str) -> str:
        return sender.lower()

    async def current(self, sender: str) -> int:
        """Get the sender's current nonce (0 if never seen)."""
        async with self._lock:
            return self._nonces.get(self._key(sender), 0)

    async def advance(self, sender: str) -> int:
        """Increment the sender's nonce and return the new value."""
        key = self._key(sender)
        async with self._lock:
            new_value = self._nonces.get(key, 0) + 1
            self._nonces[key] = new_value

        logger.debug("nonce_advanced", sender=sender, nonce=new_value)
        return new_value

    async def reserve(self, sender: str, nonce: int) -> bool:
        """
        Claim `nonce` for an in-flight transfer.

        Returns False if the nonce is stale, ahead of the counter, or already
        claimed. Always True when the tracker is not strict.
        """
        if not self.strict:
            return True

        key = self._key(sender)
        async with self._lock:
            expected = self._nonces.get(key, 0)
            reserved = self._reserved.setdefault(key, set())
            if nonce != expected or nonce in reserved:
                logger.info(
                    "nonce_rejected",
                    sender=sender,
                    nonce=nonce,
                    expected=expected,
                    in_flight=nonce in reserved,
                )
                return False
            reserved.add(nonce)
            return True

    async def release(self, sender: str, nonce: int) -> None:
        """Drop an in-flight claim on `nonce`."""
        if not self.strict:
            return

        key = self._key(sender)
        async with self._lock:
            reserved = self._reserved.get(key)
            if reserved is None:
                return
            reserved.discard(nonce)
            if not reserved:
                del self._reserved[key]
