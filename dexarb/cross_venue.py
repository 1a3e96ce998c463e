# dexarb/cross_venue.py
import asyncio
import logging
from typing import Dict, List, Optional

import ccxt.async_support as ccxt

from .config import CrossVenueConfig
from .models import CrossVenueOpportunity


class CrossVenueMonitor:
    """
    Compares on-chain pool prices with centralized-exchange tickers.
    Purely informational: results are reported, never traded.
    """
    def __init__(self, config: CrossVenueConfig, logger: logging.Logger,
                 exchanges: Optional[Dict[str, ccxt.Exchange]] = None):
        self.cfg = config
        self.logger = logger
        self.exchanges: Dict[str, ccxt.Exchange] = exchanges if exchanges is not None else {}

    def _client(self, name: str) -> Optional[ccxt.Exchange]:
        if name not in self.exchanges:
            ex_class = getattr(ccxt, name, None)
            if ex_class is None:
                self.logger.warning(f"Unknown ccxt exchange '{name}'")
                return None
            self.exchanges[name] = ex_class({'enableRateLimit': True})
        return self.exchanges[name]

    async def _external_price(self, exchange: str, symbol: str) -> Optional[float]:
        client = self._client(exchange)
        if client is None:
            return None
        try:
            ticker = await client.fetch_ticker(symbol)
        except ccxt.BaseError as e:
            self.logger.debug(f"{exchange} {symbol} ticker failed: {e}")
            return None
        return ticker.get('last') or ticker.get('close')

    async def find(self, price_map: Dict[str, float], min_profit_bps: float) -> List[CrossVenueOpportunity]:
        """
        price_map holds on-chain prices keyed by token symbol, in quote-currency units.
        """
        jobs = []
        for token, local_price in price_map.items():
            ext_token = self.cfg.symbol_map.get(token, token)
            symbol = f"{ext_token}/{self.cfg.quote_currency}"
            for exchange in self.cfg.exchanges:
                jobs.append((token, local_price, exchange, symbol))

        results = await asyncio.gather(
            *(self._external_price(exchange, symbol) for _, _, exchange, symbol in jobs),
            return_exceptions=True,
        )

        opportunities = []
        for (token, local_price, exchange, _), ext_price in zip(jobs, results):
            if isinstance(ext_price, BaseException) or not ext_price or local_price <= 0:
                continue

            diff = abs(local_price - ext_price)
            profit_bps = diff / min(local_price, ext_price) * 10000
            if profit_bps < min_profit_bps:
                continue

            estimated = self.cfg.trade_size * profit_bps / 10000 - self.cfg.bridge_cost
            if estimated < self.cfg.min_estimated_profit:
                continue

            direction = "buy_external_sell_onchain" if local_price > ext_price else "buy_onchain_sell_external"
            opportunities.append(CrossVenueOpportunity(
                token=token,
                local_price=local_price,
                external_price=ext_price,
                profit_bps=profit_bps,
                direction=direction,
                exchange=exchange,
                estimated_profit=estimated,
            ))

        opportunities.sort(key=lambda o: o.estimated_profit, reverse=True)
        return opportunities

    async def shutdown(self):
        for ex in self.exchanges.values():
            await ex.close()
