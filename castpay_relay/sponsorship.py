"""
Best-effort gas sponsorship through the paymaster contract.

The relay wallet always pays gas for the transfer itself. Sponsorship asks
the paymaster to cover the cost for the user; whether it does is
informational, and a failure never stops the transfer.
"""

from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class SponsorshipOutcome(str, Enum):
    """Result of a sponsorship attempt."""

    SPONSORED = "sponsored"
    SKIPPED = "skipped"
    FAILED = "failed"


class GasSponsorshipCoordinator:
    """Requests paymaster sponsorship for one transfer's estimated gas cost."""

    def __init__(self, gateway: Any, enabled: bool = True):
        self.gateway = gateway
        self.enabled = enabled

    async def try_sponsor(self, sender: str, estimated_gas_cost: int) -> SponsorshipOutcome:
        """Make one sponsor_gas_for_user call. Never raises."""
        if not self.enabled or not self.gateway.paymaster_configured:
            logger.debug("sponsorship_skipped", sender=sender, enabled=self.enabled)
            return SponsorshipOutcome.SKIPPED

        try:
            receipt = await self.gateway.sponsor_gas(sender, estimated_gas_cost)
        except Exception as e:
            logger.warning(
                "sponsorship_failed",
                sender=sender,
                gas_cost=estimated_gas_cost,
                error=str(e),
            )
            return SponsorshipOutcome.FAILED

        if not receipt.success:
            logger.warning(
                "sponsorship_reverted",
                sender=sender,
                gas_cost=estimated_gas_cost,
                tx_hash=receipt.tx_hash,
            )
            return SponsorshipOutcome.FAILED

        logger.info(
            "gas_sponsored",
            sender=sender,
            gas_cost=estimated_gas_cost,
            tx_hash=receipt.tx_hash,
        )
        return SponsorshipOutcome.SPONSORED
