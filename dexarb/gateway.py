# dexarb/gateway.py
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from .config import GatewayConfig
from .models import Quote, SwapRequest, SwapResult

# Signs a swap payload for the chain. Key handling lives outside this package.
Signer = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def token_key(symbol: str, overrides: Optional[Dict[str, str]] = None) -> str:
    """Converts a short symbol (GALA) into the chain's token class key."""
    if overrides and symbol in overrides:
        return overrides[symbol]
    return f"{symbol}|Unit|none|none"


class SwapGateway:
    """
    Contract for the external quote/swap service.
    quote() returns None when the pool has no liquidity at that fee tier.
    """
    async def quote(self, token_in: str, token_out: str, amount_in: float, fee_tier: int) -> Optional[Quote]:
        raise NotImplementedError

    async def swap(self, request: SwapRequest) -> SwapResult:
        raise NotImplementedError

    async def close(self):
        pass


class HttpSwapGateway(SwapGateway):
    """
    Thin aiohttp adapter over the DEX backend (quotes) and bundler (swaps).
    """
    def __init__(self, config: GatewayConfig, logger: logging.Logger, signer: Optional[Signer] = None):
        self.cfg = config
        self.logger = logger
        self.signer = signer
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def quote(self, token_in: str, token_out: str, amount_in: float, fee_tier: int) -> Optional[Quote]:
        params = {
            "tokenIn": token_key(token_in, self.cfg.token_keys),
            "tokenOut": token_key(token_out, self.cfg.token_keys),
            "amountIn": str(amount_in),
            "fee": str(fee_tier),
        }
        url = f"{self.cfg.dex_backend_url}/v1/trade/quote"
        try:
            async with self._get_session().get(url, params=params) as resp:
                if resp.status != 200:
                    self.logger.debug(f"Quote {token_in}->{token_out} @{fee_tier}: HTTP {resp.status}")
                    return None
                payload = await resp.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            self.logger.debug(f"Quote {token_in}->{token_out} @{fee_tier} failed: {e}")
            return None

        data = payload.get("data") or {}
        raw_out = data.get("amountOut")
        if raw_out is None:
            return None
        # The backend reports amountOut as a signed pool delta
        out_amount = abs(float(raw_out))
        return Quote(
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            out_amount=out_amount,
            fee_tier=int(data.get("fee", fee_tier)),
        )

    async def swap(self, request: SwapRequest) -> SwapResult:
        if self.signer is None:
            return SwapResult(success=False, error="No swap signer configured")

        payload = {
            "tokenIn": token_key(request.token_in, self.cfg.token_keys),
            "tokenOut": token_key(request.token_out, self.cfg.token_keys),
            "amountIn": str(request.amount_in),
            "amountOutMinimum": str(request.min_amount_out),
            "fee": request.fee_tier,
            "recipient": request.recipient or self.cfg.wallet_address,
            "uniqueKey": f"galaswap-operation-{uuid.uuid4()}",
        }
        try:
            signed = await self.signer(payload)
            url = f"{self.cfg.bundler_url}/bundle"
            async with self._get_session().post(url, json=signed) as resp:
                body = await resp.json(content_type=None)
                if resp.status >= 400:
                    return SwapResult(success=False, error=f"HTTP {resp.status}: {body}")
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            return SwapResult(success=False, error=str(e))

        data = body.get("data") or {}
        actual = data.get("amountOut")
        return SwapResult(
            success=True,
            transaction_id=data.get("transactionId") or body.get("id"),
            actual_amount_out=abs(float(actual)) if actual is not None else None,
        )

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
