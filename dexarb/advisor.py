# dexarb/advisor.py
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from .config import GuidanceConfig

ALLOWED_LABELS = ("arbitrage", "triangular", "trend", "fibonacci", "avoid", "hold")


class GuidanceSource:
    """Produces a coarse market-regime label, or None when it has no opinion."""
    async def advise(self, pairs: Sequence[Tuple[str, str]], slippage_bps: int) -> Optional[str]:
        raise NotImplementedError


class StaticGuidanceSource(GuidanceSource):
    def __init__(self, label: Optional[str]):
        self.label = label

    async def advise(self, pairs, slippage_bps):
        return self.label


def extract_label(text: str) -> Optional[str]:
    """
    Pulls a regime label out of an advisor reply. Accepts a JSON object with
    'recommended_strategy' (optionally wrapped in a markdown fence) or plain text.
    """
    if not text:
        return None
    cleaned = re.sub(r"^```(?:json)?\s*|```\s*$", "", text.strip(), flags=re.IGNORECASE).strip()

    parsed = None
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        first, last = cleaned.find("{"), cleaned.rfind("}")
        if 0 <= first < last:
            try:
                parsed = json.loads(cleaned[first:last + 1])
            except ValueError:
                parsed = None

    if isinstance(parsed, dict):
        rec = str(parsed.get("recommended_strategy", "")).lower()
        if rec in ALLOWED_LABELS:
            return rec

    lowered = cleaned.lower()
    if lowered in ALLOWED_LABELS:
        return lowered
    for label in ALLOWED_LABELS:
        if re.search(rf"\b{label}\b", lowered):
            return label
    return None


class LlmGuidanceSource(GuidanceSource):
    """
    Asks a hosted language model for the regime of the next few minutes.
    Any transport or parsing failure yields None.
    """
    def __init__(self, config: GuidanceConfig, logger: logging.Logger):
        self.cfg = config
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def is_enabled(self) -> bool:
        return self.cfg.enabled and bool(self.cfg.api_key)

    def build_prompt(self, pairs: Sequence[Tuple[str, str]], slippage_bps: int) -> str:
        pair_list: List[Dict[str, Any]] = [{"symbolIn": a, "symbolOut": b} for a, b in pairs]
        return "\n".join([
            "You are an on-chain trading strategy advisor for a DEX liquidity bot.",
            "Recommend the market regime for the next 10 minutes.",
            "Allowed values: arbitrage, triangular, trend, avoid, hold.",
            f"Pairs: {json.dumps(pair_list)}",
            f"Slippage budget: {slippage_bps}bps",
            'Output JSON only: {"recommended_strategy": "...", "rationale": "..."}',
        ])

    async def advise(self, pairs, slippage_bps):
        if not self.is_enabled:
            return None

        body = {"contents": [{"parts": [{"text": self.build_prompt(pairs, slippage_bps)}]}]}
        headers = {"content-type": "application/json", "x-goog-api-key": self.cfg.api_key}
        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
            async with self._session.post(self.cfg.endpoint, json=body, headers=headers) as resp:
                if resp.status != 200:
                    self.logger.warning(f"⚠️ Advisor HTTP {resp.status}")
                    return None
                data = await resp.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            self.logger.warning(f"⚠️ Advisor consultation failed: {e}")
            return None

        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = next((p["text"] for p in parts if isinstance(p, dict) and "text" in p), "")
        except (KeyError, IndexError, TypeError):
            text = ""
        return extract_label(text)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
