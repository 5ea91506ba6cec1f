"""DexScreener 现货价格源"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from ..config import PriceConfig
from ..models.token import PriceQuote
from .token_directory import TokenDirectory, normalize_address

logger = logging.getLogger(__name__)

CHANGE_WINDOWS = ("m5", "h1", "h6", "h24")


class PriceFeed:
    """按代币地址批量获取 USD 价格；单个代币缺价不影响整批"""

    def __init__(self, config: PriceConfig, directory: TokenDirectory):
        self.config = config
        self.directory = directory
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self._pair_cache: Dict[str, Optional[str]] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, url: str) -> Optional[Dict[str, Any]]:
        session = await self._get_session()
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    logger.warning(f"Price API returned {resp.status} for {url}")
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Price API request failed: {e}")
            return None

    async def find_best_pair(self, address: str) -> Optional[str]:
        """为未配置交易对的代币查找流动性最高的交易对"""
        if address in self._pair_cache:
            return self._pair_cache[address]

        data = await self._get_json(f"{self.config.base_url}/tokens/{address}")
        pairs = (data or {}).get("pairs") or []
        chain_pairs = [p for p in pairs if p.get("chainId") == self.config.chain_name]
        best = None
        if chain_pairs:
            chain_pairs.sort(
                key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0),
                reverse=True,
            )
            best = (chain_pairs[0].get("pairAddress") or "").lower() or None
        self._pair_cache[address] = best
        return best

    async def _fetch_pairs(self, pair_addresses: List[str]) -> Dict[str, Dict[str, Any]]:
        """分批拉取交易对数据，批次之间间隔 batch_delay"""
        results: Dict[str, Dict[str, Any]] = {}
        size = self.config.batch_size
        for i in range(0, len(pair_addresses), size):
            batch = pair_addresses[i:i + size]
            url = f"{self.config.base_url}/pairs/{self.config.chain_name}/{','.join(batch)}"
            data = await self._get_json(url)
            for pair in (data or {}).get("pairs") or []:
                addr = (pair.get("pairAddress") or "").lower()
                if addr:
                    results[addr] = pair
            if i + size < len(pair_addresses):
                await asyncio.sleep(self.config.batch_delay)
        return results

    @staticmethod
    def parse_pair(pair: Optional[Dict[str, Any]]) -> PriceQuote:
        """交易对数据 -> PriceQuote；缺少 priceUsd 视为不可用"""
        if not pair or not pair.get("priceUsd"):
            return PriceQuote.unavailable()
        try:
            price = float(pair["priceUsd"])
        except (TypeError, ValueError):
            return PriceQuote.unavailable()
        change = pair.get("priceChange") or {}
        liquidity = pair.get("liquidity") or {}
        return PriceQuote(
            price=price,
            change={w: change.get(w) for w in CHANGE_WINDOWS},
            liquidity_usd=float(liquidity.get("usd") or 0),
        )

    async def quotes(self, addresses: Iterable[str]) -> Dict[str, PriceQuote]:
        """批量报价，返回 地址 -> PriceQuote（缺价为 unavailable）"""
        wanted = sorted({normalize_address(a) for a in addresses if a})
        pair_for: Dict[str, Optional[str]] = {}
        for address in wanted:
            token = self.directory.resolve(address)
            pair = token.pair_address
            if not pair and not token.is_native:
                pair = await self.find_best_pair(address)
            pair_for[address] = pair.lower() if pair else None

        pair_data = await self._fetch_pairs(sorted({p for p in pair_for.values() if p}))

        results: Dict[str, PriceQuote] = {}
        missing = []
        for address, pair in pair_for.items():
            quote = self.parse_pair(pair_data.get(pair)) if pair else PriceQuote.unavailable()
            if not quote.available:
                missing.append(address)
            results[address] = quote

        logger.info(f"Fetched prices: {len(results) - len(missing)} ok, {len(missing)} unavailable")
        if missing:
            logger.debug(f"No price for: {missing}")
        return results

    async def quote(self, address: str) -> PriceQuote:
        address = normalize_address(address)
        return (await self.quotes([address])).get(address, PriceQuote.unavailable())
