"""订单筛选与排序管线（纯函数）"""
import time
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..data.token_directory import TokenDirectory, normalize_address
from ..models.order import CatalogSnapshot, DisplayStatus, OrderRecord
from ..models.token import PriceQuote
from .valuator import discount, value_of


class ClassFilter(Enum):
    ALL = "all"
    CLASS_A = "maxi"
    NOT_CLASS_A = "non-maxi"


class OwnerFilter(Enum):
    ALL = "all"
    MINE = "mine"
    OTHERS = "others"


class StatusFilter(Enum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class SortField(Enum):
    SELL_USD = "sell_usd"
    MIN_BUY_USD = "min_buy_usd"
    VS_MARKET = "vs_market"
    LEG_COUNT = "leg_count"
    FILL = "fill"
    OWNER = "owner"
    STATUS = "status"
    EXPIRATION = "expiration"
    ORDER_ID = "order_id"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"


_STATUS_MATCH = {
    StatusFilter.ACTIVE: DisplayStatus.ACTIVE,
    StatusFilter.COMPLETED: DisplayStatus.COMPLETED,
    StatusFilter.INACTIVE: DisplayStatus.INACTIVE,
    StatusFilter.CANCELLED: DisplayStatus.CANCELLED,
}

NEG_INF = Decimal("-Infinity")


def matches_class(order: OrderRecord, class_filter: ClassFilter, directory: TokenDirectory) -> bool:
    """卖出代币或任一买方代币属于 class A 集合"""
    if class_filter == ClassFilter.ALL:
        return True
    in_set = directory.is_class_a(order.sell_token) or any(
        directory.is_class_a(directory.address_for_index(leg.token_index) or "")
        for leg in order.buy_legs
    )
    return in_set if class_filter == ClassFilter.CLASS_A else not in_set


def matches_owner(order: OrderRecord, owner_filter: OwnerFilter, viewer: Optional[str]) -> bool:
    if owner_filter == OwnerFilter.ALL:
        return True
    mine = order.is_owned_by(viewer)
    return mine if owner_filter == OwnerFilter.MINE else not mine


def matches_status(order: OrderRecord, status_filter: StatusFilter, now: float) -> bool:
    if status_filter == StatusFilter.ALL:
        return True
    return order.display_status(now) == _STATUS_MATCH[status_filter]


def matches_search(order: OrderRecord, search: str, directory: TokenDirectory) -> bool:
    """按订单号或代币简称搜索"""
    term = search.strip().lower().lstrip("#")
    if not term:
        return True
    if term.isdigit() and str(order.order_id) == term:
        return True
    tickers = [directory.resolve(order.sell_token).ticker]
    tickers.extend(directory.resolve(leg.token_index).ticker for leg in order.buy_legs)
    if any(term in t.lower() for t in tickers):
        return True
    return normalize_address(order.sell_token) == normalize_address(term)


def _sort_key(sort_field: SortField, prices: Dict[str, PriceQuote],
              directory: TokenDirectory) -> Callable[[OrderRecord], object]:
    if sort_field == SortField.SELL_USD:
        return lambda o: value_of(o, prices, directory).sell_usd or Decimal(0)
    if sort_field == SortField.MIN_BUY_USD:
        return lambda o: value_of(o, prices, directory).min_buy_usd or Decimal(0)
    if sort_field == SortField.VS_MARKET:
        def vs_market(o: OrderRecord):
            pct = discount(o, prices, directory).vs_market_pct
            return pct if pct is not None else NEG_INF
        return vs_market
    if sort_field == SortField.LEG_COUNT:
        return lambda o: len(o.buy_legs)
    if sort_field == SortField.FILL:
        return lambda o: o.fill_fraction
    if sort_field == SortField.OWNER:
        return lambda o: o.owner.lower()
    if sort_field == SortField.STATUS:
        return lambda o: int(o.status)
    if sort_field == SortField.EXPIRATION:
        return lambda o: o.expiration_time
    return lambda o: o.order_id


def apply_pipeline(
    snapshot: CatalogSnapshot,
    class_filter: ClassFilter = ClassFilter.ALL,
    owner_filter: OwnerFilter = OwnerFilter.ALL,
    status_filter: StatusFilter = StatusFilter.ACTIVE,
    sort_field: SortField = SortField.EXPIRATION,
    sort_direction: SortDirection = SortDirection.DESC,
    viewer_address: Optional[str] = None,
    prices: Optional[Dict[str, PriceQuote]] = None,
    directory: Optional[TokenDirectory] = None,
    now: Optional[float] = None,
    search: str = "",
) -> List[OrderRecord]:
    """按 代币类别 -> 归属 -> 生命周期 -> 搜索 顺序筛选，再稳定排序

    价格缺失时 USD 排序值按 0 处理，不会排除订单。相同输入总是得到相同输出。
    """
    prices = prices or {}
    directory = directory or TokenDirectory()
    if now is None:
        now = time.time()

    rows = [
        order for order in snapshot.orders.values()
        if matches_class(order, class_filter, directory)
        and matches_owner(order, owner_filter, viewer_address)
        and matches_status(order, status_filter, now)
        and matches_search(order, search, directory)
    ]
    key = _sort_key(sort_field, prices, directory)
    return sorted(rows, key=key, reverse=sort_direction == SortDirection.DESC)
