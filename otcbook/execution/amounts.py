"""出价数量：输入校验与多腿等比例成交"""
from decimal import Decimal, InvalidOperation
from typing import Dict

from ..data.token_directory import TokenDirectory, normalize_address
from ..models.order import OrderRecord, TradeIntent

MAX_AMOUNT = Decimal("1e30")


class AmountError(ValueError):
    """数量输入不合法"""


def parse_amount(text: str, decimals: int) -> int:
    """将用户输入的数量（可含千分位逗号）转为最小单位整数"""
    cleaned = (text or "").replace(",", "").strip()
    if cleaned in ("", "."):
        raise AmountError("Amount is required")
    if cleaned.count(".") > 1 or not cleaned.replace(".", "").isdigit():
        raise AmountError("Invalid number format")
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise AmountError("Invalid number")
    if value <= 0:
        raise AmountError("Amount must be positive")
    if value > MAX_AMOUNT:
        raise AmountError("Amount exceeds maximum limit")
    fraction = cleaned.split(".")[1] if "." in cleaned else ""
    if len(fraction) > decimals:
        raise AmountError(f"Maximum {decimals} decimal places allowed")
    return int(value * (Decimal(10) ** decimals))


def max_amounts(order: OrderRecord, directory: TokenDirectory) -> Dict[str, int]:
    """每条买方腿当前可出价的上限（按剩余成交比例）"""
    result: Dict[str, int] = {}
    for position, leg in enumerate(order.buy_legs):
        address = directory.address_for_index(leg.token_index)
        if address:
            result[address] = order.remaining_buy_amount(position)
    return result


def rescale_amounts(order: OrderRecord, directory: TokenDirectory,
                    edited_token: str, new_amount: int) -> Dict[str, int]:
    """修改一条腿后，其余各腿同步调整到相同的上限比例

    编辑腿的数量按其上限截断；上限为 0 的腿保持 0。
    """
    maxima = max_amounts(order, directory)
    edited = normalize_address(edited_token)
    if edited not in maxima:
        raise AmountError(f"Token {edited_token} is not a buy leg of order {order.order_id}")

    edited_max = maxima[edited]
    if edited_max <= 0:
        return {addr: 0 for addr in maxima}

    amount = max(0, min(new_amount, edited_max))
    result: Dict[str, int] = {}
    for address, leg_max in maxima.items():
        if address == edited:
            result[address] = amount
        else:
            result[address] = leg_max * amount // edited_max
    return result


def intent_from_fraction(order: OrderRecord, directory: TokenDirectory,
                         fraction: Decimal) -> TradeIntent:
    """按相同比例为所有腿生成出价（fraction 取值 0..1）"""
    fraction = max(Decimal(0), min(Decimal(1), fraction))
    amounts = {
        address: int(Decimal(leg_max) * fraction)
        for address, leg_max in max_amounts(order, directory).items()
    }
    return TradeIntent(order_id=order.order_id, amounts=amounts)
