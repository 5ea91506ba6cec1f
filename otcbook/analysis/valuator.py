"""订单估值：USD 价值、相对市价/背书价的折溢价"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from ..data.token_directory import (
    NATIVE_ADDRESS,
    WPLS_ADDRESS,
    TokenDirectory,
    normalize_address,
)
from ..models.order import OrderRecord, TradeIntent
from ..models.token import PriceQuote

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


@dataclass
class OrderValuation:
    """订单 USD 估值（None 表示价格未知）"""
    sell_usd: Optional[Decimal]
    buy_usd_per_leg: List[Optional[Decimal]] = field(default_factory=list)
    min_buy_usd: Optional[Decimal] = None


@dataclass
class Discount:
    """相对市价 / 背书价的百分比"""
    vs_market_pct: Optional[Decimal] = None
    vs_backing_pct: Optional[Decimal] = None


@dataclass
class IntentValuation:
    """对手方出价的估值"""
    offered_usd: Optional[Decimal]
    received_sell_amount: int
    received_usd: Optional[Decimal]


def price_for(address: str, prices: Dict[str, PriceQuote], directory: TokenDirectory) -> Optional[Decimal]:
    """取 USD 价格，先套用固定规则再回退到原始报价

    - 锚定稳定币恒为 1.0
    - 原生币使用 WPLS 报价
    """
    addr = normalize_address(address)
    if directory.is_stable(addr):
        return Decimal(1)
    if addr == NATIVE_ADDRESS:
        wrapped = prices.get(WPLS_ADDRESS)
        if wrapped is not None and wrapped.usd is not None:
            return wrapped.usd
    quote = prices.get(addr)
    if quote is None:
        return None
    return quote.usd


def _usd(address: str, raw_amount: int, prices: Dict[str, PriceQuote],
         directory: TokenDirectory) -> Optional[Decimal]:
    price = price_for(address, prices, directory)
    if price is None:
        return None
    return directory.resolve(address).to_units(raw_amount) * price


def value_of(order: OrderRecord, prices: Dict[str, PriceQuote],
             directory: TokenDirectory) -> OrderValuation:
    """计算卖出侧、各买方腿的 USD 价值及最小买方价值"""
    sell_usd = _usd(order.sell_token, order.sell_amount, prices, directory)

    buy_usd: List[Optional[Decimal]] = []
    for leg in order.buy_legs:
        address = directory.address_for_index(leg.token_index)
        buy_usd.append(_usd(address, leg.amount, prices, directory) if address else None)

    # 任一腿价格未知时，最差情形无法确定
    if buy_usd and all(v is not None for v in buy_usd):
        min_buy = min(buy_usd)
    else:
        min_buy = None

    return OrderValuation(sell_usd=sell_usd, buy_usd_per_leg=buy_usd, min_buy_usd=min_buy)


def _pct(numerator: Optional[Decimal], base: Optional[Decimal]) -> Optional[Decimal]:
    if numerator is None or base is None or base == 0:
        return None
    return (numerator - base) / base * HUNDRED


def crosses_domains(order: OrderRecord, directory: TokenDirectory) -> bool:
    """卖出侧与任一买方腿属于两个不同的已知结算域"""
    sell_domain = directory.resolve(order.sell_token).domain
    if sell_domain is None:
        return False
    for leg in order.buy_legs:
        leg_domain = directory.resolve(leg.token_index).domain
        if leg_domain is not None and leg_domain != sell_domain:
            return True
    return False


def backing_usd(order: OrderRecord, prices: Dict[str, PriceQuote],
                directory: TokenDirectory) -> Optional[Decimal]:
    """卖出数量按背书资产折算的 USD 价值；无参考数据返回 None"""
    per_token = directory.backing_per_token(order.sell_token)
    if per_token is None:
        return None
    sell_token = directory.resolve(order.sell_token)
    asset = directory.backing_asset(sell_token.domain)
    if asset is None:
        return None
    asset_price = price_for(asset, prices, directory)
    if asset_price is None:
        return None
    return sell_token.to_units(order.sell_amount) * per_token * asset_price


def discount(order: OrderRecord, prices: Dict[str, PriceQuote], directory: TokenDirectory,
             valuation: Optional[OrderValuation] = None) -> Discount:
    """OTC 报价相对市价、背书价的百分比"""
    if valuation is None:
        valuation = value_of(order, prices, directory)

    vs_market = _pct(valuation.min_buy_usd, valuation.sell_usd)

    vs_backing = None
    if not crosses_domains(order, directory):
        vs_backing = _pct(valuation.min_buy_usd, backing_usd(order, prices, directory))

    return Discount(vs_market_pct=vs_market, vs_backing_pct=vs_backing)


def value_of_intent(order: OrderRecord, intent: TradeIntent, prices: Dict[str, PriceQuote],
                    directory: TokenDirectory) -> IntentValuation:
    """估算一笔出价：付出的 USD 与按比例获得的卖出代币"""
    offered = {normalize_address(a): v for a, v in intent.amounts.items()}
    offered_usd: Optional[Decimal] = Decimal(0)
    received = 0
    for leg in order.buy_legs:
        address = directory.address_for_index(leg.token_index)
        amount = offered.get(address, 0) if address else 0
        if amount <= 0:
            continue
        usd = _usd(address, amount, prices, directory)
        offered_usd = None if usd is None or offered_usd is None else offered_usd + usd
        if leg.amount > 0 and received == 0:
            received = order.sell_amount * amount // leg.amount

    received_usd = _usd(order.sell_token, received, prices, directory) if received else Decimal(0)
    return IntentValuation(offered_usd=offered_usd, received_sell_amount=received, received_usd=received_usd)
