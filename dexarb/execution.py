# dexarb/execution.py
import time
from typing import Optional

from .gateway import SwapGateway
from .models import SwapRequest, SwapResult


def min_amount_out(quoted_out: float, slippage_bps: float) -> float:
    """Smallest acceptable output for a quote under a slippage tolerance."""
    return quoted_out * (1 - slippage_bps / 10000)


class ExecutionService:
    """
    Places swaps through the gateway.
    In dry-run mode nothing leaves the process: the swap is reported as filled
    at the quoted output so downstream accounting behaves as in live mode.
    """
    def __init__(self, gateway: SwapGateway, logger, dry_run: bool, wallet_address: str = ""):
        self.gateway = gateway
        self.logger = logger
        self.dry_run = dry_run
        self.wallet = wallet_address

    async def swap(self, token_in: str, token_out: str, amount_in: float, quoted_out: float,
                   fee_tier: int, slippage_bps: int, min_out: Optional[float] = None) -> SwapResult:
        """
        Swaps exactly amount_in of token_in. min_out defaults to the quoted
        output less the slippage tolerance.
        Never raises; gateway errors come back as an unsuccessful SwapResult.
        """
        floor = min_amount_out(quoted_out, slippage_bps) if min_out is None else min_out

        if self.dry_run:
            self.logger.info(
                f"🔵 DRY RUN: {amount_in:.6f} {token_in} -> {quoted_out:.6f} {token_out} "
                f"| fee {fee_tier} | minOut {floor:.6f}"
            )
            return SwapResult(
                success=True,
                transaction_id=f"dry-run-{int(time.time() * 1000)}",
                actual_amount_out=quoted_out,
            )

        request = SwapRequest(
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            min_amount_out=floor,
            fee_tier=fee_tier,
            recipient=self.wallet,
            slippage_bps=slippage_bps,
        )
        self.logger.info(f"⚡ SWAP: {amount_in:.6f} {token_in} -> {token_out} | fee {fee_tier} | minOut {floor:.6f}")

        try:
            result = await self.gateway.swap(request)
        except Exception as e:
            self.logger.error(f"❌ Swap {token_in}->{token_out} raised: {e}")
            return SwapResult(success=False, error=str(e))

        if result.success:
            self.logger.info(f"✅ Swap confirmed: {result.transaction_id}")
        else:
            self.logger.warning(f"⚠️ Swap {token_in}->{token_out} rejected: {result.error}")
        return result
