"""事件对账：回放链上事件并结合当前目录生成通知"""
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from ..data import abi
from ..data.ledger_client import LedgerClient
from ..data.order_catalog import OrderCatalog
from ..models.order import DisplayStatus
from .store import (
    CHECKPOINT_KEY,
    EVENTS_KEY,
    KeyValueStore,
    ReadStateStore,
    notification_id,
    viewer_key,
)

logger = logging.getLogger(__name__)

CREATED_KEY = "notifications_created_orders"


class NotificationKind(Enum):
    FILLED = "filled"
    UPDATED = "updated"


class Role(Enum):
    BOUGHT = "buy"      # 我作为对手方成交
    SOLD = "sell"       # 我创建的订单被成交 / 更新


@dataclass
class RawEvent:
    """缓存的原始事件（可 JSON 序列化）"""
    kind: str
    role: str
    order_id: int
    tx_ref: str
    block_number: int
    log_index: int
    timestamp: int

    @property
    def key(self) -> Tuple[str, int, int, str]:
        return self.tx_ref, self.log_index, self.order_id, self.kind


@dataclass
class Notification:
    order_id: int
    kind: NotificationKind
    role: Role
    timestamp: int
    tx_ref: str
    block_number: int = 0
    is_read: bool = False
    is_new: bool = False

    @property
    def id(self) -> str:
        return notification_id(self.tx_ref, self.order_id)


class EventReconciler:
    """通知源

    每个钱包持久化一个区块高度检查点和已扫描的原始事件，
    每次只扫描 checkpoint+1 .. latest 的新区块并合并。
    """

    def __init__(self, ledger: LedgerClient, catalog: OrderCatalog, store: KeyValueStore):
        self.ledger = ledger
        self.catalog = catalog
        self.store = store
        self.read_state = ReadStateStore(store)

    # ------------------------------------------------------------------
    # 事件扫描
    # ------------------------------------------------------------------

    def checkpoint(self, viewer: str) -> Optional[int]:
        value = self.store.get(viewer_key(CHECKPOINT_KEY, viewer))
        return int(value) if value is not None else None

    def cached_events(self, viewer: str) -> List[RawEvent]:
        return [RawEvent(**item) for item in self.store.get(viewer_key(EVENTS_KEY, viewer), [])]

    async def _timestamps(self, blocks: Set[int]) -> Dict[int, int]:
        result = {}
        for block in sorted(blocks):
            result[block] = await self.ledger.get_block_timestamp(block)
        return result

    async def sync(self, viewer: str) -> List[RawEvent]:
        """扫描新区块，返回合并后的全部原始事件

        读取失败时异常向上抛出，检查点不前移。
        """
        viewer = viewer.lower()
        checkpoint = self.checkpoint(viewer)
        cached = self.cached_events(viewer)
        latest = await self.ledger.get_block_number()
        if checkpoint is not None and checkpoint >= latest:
            return cached

        from_block = checkpoint + 1 if checkpoint is not None else 0
        created: Set[int] = set(self.store.get(viewer_key(CREATED_KEY, viewer), []))

        bought = await self.ledger.get_logs(abi.ORDER_EXECUTED, {"user": viewer}, from_block, latest)
        new_created = await self.ledger.get_logs(abi.ORDER_CREATED, {"user": viewer}, from_block, latest)
        created.update(int(log.args["orderId"]) for log in new_created)

        found: List[Tuple[NotificationKind, Role, abi.LogEntry]] = [
            (NotificationKind.FILLED, Role.BOUGHT, log) for log in bought
        ]
        if created:
            executed = await self.ledger.get_logs(abi.ORDER_EXECUTED, None, from_block, latest)
            for log in executed:
                # 自己成交自己的订单已计入 BOUGHT
                if int(log.args["orderId"]) in created and log.args.get("user") != viewer:
                    found.append((NotificationKind.FILLED, Role.SOLD, log))
            updated = await self.ledger.get_logs(abi.ORDER_UPDATED, None, from_block, latest)
            for log in updated:
                if int(log.args["orderId"]) in created:
                    found.append((NotificationKind.UPDATED, Role.SOLD, log))

        timestamps = await self._timestamps({log.block_number for _, _, log in found})
        merged = {event.key: event for event in cached}
        for kind, role, log in found:
            event = RawEvent(
                kind=kind.value,
                role=role.value,
                order_id=int(log.args["orderId"]),
                tx_ref=log.tx_hash,
                block_number=log.block_number,
                log_index=log.log_index,
                timestamp=timestamps.get(log.block_number, 0),
            )
            merged[event.key] = event

        events = sorted(merged.values(), key=lambda e: (e.block_number, e.log_index))
        self.store.set(viewer_key(CREATED_KEY, viewer), sorted(created))
        self.store.set(viewer_key(EVENTS_KEY, viewer), [asdict(e) for e in events])
        self.store.set(viewer_key(CHECKPOINT_KEY, viewer), latest)
        logger.info(
            f"Scanned blocks {from_block}..{latest} for {viewer}: "
            f"{len(found)} new events, {len(events)} total"
        )
        return events

    # ------------------------------------------------------------------
    # 通知
    # ------------------------------------------------------------------

    async def notifications(self, viewer: Optional[str], now: Optional[float] = None) -> List[Notification]:
        """当前钱包的通知列表（最新在前）

        订单已不在目录中、或已过期（INACTIVE）的通知会被丢弃。
        """
        if not viewer:
            return []
        viewer = viewer.lower()
        if now is None:
            now = time.time()

        events = await self.sync(viewer)
        snapshot = self.catalog.snapshot
        read_ids = self.read_state.read_ids(viewer)
        last_seen = self.read_state.last_seen(viewer)

        result = []
        for event in events:
            order = snapshot.get(event.order_id) if snapshot is not None else None
            if order is None or order.display_status(now) == DisplayStatus.INACTIVE:
                continue
            nid = notification_id(event.tx_ref, event.order_id)
            is_read = nid in read_ids
            result.append(Notification(
                order_id=event.order_id,
                kind=NotificationKind(event.kind),
                role=Role(event.role),
                timestamp=event.timestamp,
                tx_ref=event.tx_ref,
                block_number=event.block_number,
                is_read=is_read,
                is_new=event.timestamp > last_seen and not is_read,
            ))

        result.sort(key=lambda n: (n.timestamp, n.block_number), reverse=True)
        return result

    @staticmethod
    def unread_count(notifications: List[Notification]) -> int:
        return sum(1 for n in notifications if n.is_new)

    def mark_read(self, viewer: str, nid: str) -> None:
        self.read_state.mark_read(viewer, nid)

    def mark_unread(self, viewer: str, nid: str) -> None:
        self.read_state.mark_unread(viewer, nid)

    def toggle_read(self, viewer: str, nid: str) -> bool:
        return self.read_state.toggle_read(viewer, nid)

    def mark_seen(self, viewer: str, now: Optional[float] = None) -> None:
        self.read_state.mark_seen(viewer, int(now if now is not None else time.time()))
