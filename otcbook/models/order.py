"""订单数据模型"""
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

# remainingExecutionPercentage 的定点精度（1e18 = 100% 未成交）
PERCENTAGE_SCALE = 10 ** 18


class OrderStatus(IntEnum):
    """链上订单状态"""
    ACTIVE = 0
    CANCELLED = 1
    COMPLETED = 2


class DisplayStatus(Enum):
    """展示状态（INACTIVE 为过期派生状态，不落库）"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BuyLeg:
    """买方腿：代币索引 + 数量"""
    token_index: int
    amount: int


@dataclass(frozen=True)
class OrderRecord:
    """链上订单记录"""
    order_id: int
    owner: str
    sell_token: str
    sell_amount: int
    buy_legs: Tuple[BuyLeg, ...]
    expiration_time: int
    status: OrderStatus
    remaining_execution_percentage: int
    last_update_time: int = 0
    redeemed_percentage: int = 0

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return self.expiration_time < now

    def display_status(self, now: Optional[float] = None) -> DisplayStatus:
        """派生展示状态：ACTIVE 且已过期视为 INACTIVE"""
        if self.status == OrderStatus.CANCELLED:
            return DisplayStatus.CANCELLED
        if self.status == OrderStatus.COMPLETED:
            return DisplayStatus.COMPLETED
        if self.is_expired(now):
            return DisplayStatus.INACTIVE
        return DisplayStatus.ACTIVE

    @property
    def fill_fraction(self) -> Decimal:
        """已成交比例 = 1 - remaining / 1e18"""
        remaining = Decimal(self.remaining_execution_percentage) / Decimal(PERCENTAGE_SCALE)
        return Decimal(1) - remaining

    @property
    def remaining_sell_amount(self) -> int:
        return self.sell_amount * self.remaining_execution_percentage // PERCENTAGE_SCALE

    def remaining_buy_amount(self, leg_position: int) -> int:
        """某条买方腿当前剩余可成交数量"""
        leg = self.buy_legs[leg_position]
        return leg.amount * self.remaining_execution_percentage // PERCENTAGE_SCALE

    def is_owned_by(self, address: Optional[str]) -> bool:
        return bool(address) and self.owner.lower() == address.lower()


@dataclass(frozen=True)
class CatalogSnapshot:
    """订单目录快照（整体替换，不做字段级修补）"""
    orders: Mapping[int, OrderRecord]
    fetched_at: float
    partial: bool
    counter: int
    failed_ids: Tuple[int, ...] = ()
    active_ids: Tuple[int, ...] = ()
    completed_ids: Tuple[int, ...] = ()
    cancelled_ids: Tuple[int, ...] = ()

    @classmethod
    def build(cls, orders: Dict[int, OrderRecord], counter: int,
              failed_ids: List[int], fetched_at: Optional[float] = None) -> "CatalogSnapshot":
        """按状态一次性分类并冻结订单映射"""
        ordered = {oid: orders[oid] for oid in sorted(orders)}
        active, completed, cancelled = [], [], []
        for oid, order in ordered.items():
            if order.status == OrderStatus.ACTIVE:
                active.append(oid)
            elif order.status == OrderStatus.COMPLETED:
                completed.append(oid)
            elif order.status == OrderStatus.CANCELLED:
                cancelled.append(oid)
        return cls(
            orders=MappingProxyType(ordered),
            fetched_at=fetched_at if fetched_at is not None else time.time(),
            partial=bool(failed_ids),
            counter=counter,
            failed_ids=tuple(sorted(failed_ids)),
            active_ids=tuple(active),
            completed_ids=tuple(completed),
            cancelled_ids=tuple(cancelled),
        )

    def get(self, order_id: int) -> Optional[OrderRecord]:
        return self.orders.get(order_id)

    def all_orders(self) -> List[OrderRecord]:
        return list(self.orders.values())

    def displayable_active(self, now: Optional[float] = None) -> List[OrderRecord]:
        """状态为 ACTIVE 且未过期的订单"""
        return [
            self.orders[oid] for oid in self.active_ids
            if not self.orders[oid].is_expired(now)
        ]

    def __len__(self) -> int:
        return len(self.orders)


@dataclass
class TradeIntent:
    """用户输入的成交意向：代币地址 -> 出价数量（最小单位）"""
    order_id: int
    amounts: Dict[str, int] = field(default_factory=dict)

    def positive_amounts(self) -> Dict[str, int]:
        return {addr: amt for addr, amt in self.amounts.items() if amt > 0}

    @property
    def has_positive_amount(self) -> bool:
        return any(amt > 0 for amt in self.amounts.values())
