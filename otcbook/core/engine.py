"""核心引擎"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from ..analysis.pipeline import apply_pipeline
from ..analysis.valuator import Discount, OrderValuation, discount, value_of
from ..config import Config
from ..data.ledger_client import LedgerClient
from ..data.order_catalog import OrderCatalog
from ..data.price_feed import PriceFeed
from ..data.token_directory import WPLS_ADDRESS, TokenDirectory
from ..errors import LedgerError
from ..execution.trade_executor import TradeErrorKind, TradeExecutor, TradeResult
from ..models.order import CatalogSnapshot, DisplayStatus, OrderRecord, TradeIntent
from ..models.token import PriceQuote
from ..notification.reconciler import EventReconciler, Notification
from ..notification.store import JsonFileStore, KeyValueStore, ViewState, load_view_state, save_view_state
from ..notification.telegram import TelegramNotifier, format_trade_result

logger = logging.getLogger(__name__)


@dataclass
class OrderView:
    """列表中的一行"""
    order: OrderRecord
    status: DisplayStatus
    valuation: OrderValuation
    discount: Discount


class Engine:
    """组装目录、报价、执行、通知的引擎"""

    def __init__(
        self,
        config: Config,
        ledger: Optional[LedgerClient] = None,
        price_feed: Optional[PriceFeed] = None,
        store: Optional[KeyValueStore] = None,
        directory: Optional[TokenDirectory] = None,
        notifier: Optional[TelegramNotifier] = None,
    ):
        self.config = config
        self.directory = directory or TokenDirectory.from_backing_file(config.store.backing_file)
        self.ledger = ledger or LedgerClient(config.ledger)
        self.price_feed = price_feed or PriceFeed(config.price, self.directory)
        self.store = store if store is not None else JsonFileStore(config.store.state_file)
        self.catalog = OrderCatalog(self.ledger, config.catalog)
        self.executor = TradeExecutor(
            self.ledger, self.directory, config.execution, config.ledger.wallet_address
        )
        self.reconciler = EventReconciler(self.ledger, self.catalog, self.store)
        self.view_state = load_view_state(self.store)
        self.wallet = config.ledger.wallet_address.lower()
        self.prices: Dict[str, PriceQuote] = {}
        self._pushed: Set[str] = set()
        self._running = False
        self._last_refresh = 0.0

        # 初始化 Telegram 通知
        if notifier is not None:
            self.notifier = notifier
        elif config.telegram.enabled:
            self.notifier = TelegramNotifier(config.telegram)
            logger.info("Telegram notifier enabled")
        else:
            self.notifier = None

    @property
    def snapshot(self) -> Optional[CatalogSnapshot]:
        return self.catalog.snapshot

    # ------------------------------------------------------------------
    # 目录与报价
    # ------------------------------------------------------------------

    def _tokens_in(self, snapshot: CatalogSnapshot) -> Set[str]:
        tokens = {WPLS_ADDRESS}
        for order in snapshot.all_orders():
            tokens.add(order.sell_token)
            for leg in order.buy_legs:
                address = self.directory.address_for_index(leg.token_index)
                if address:
                    tokens.add(address)
        return tokens

    async def refresh(self) -> CatalogSnapshot:
        """刷新目录，然后刷新涉及代币的报价（计数器读取失败向上抛出）"""
        snapshot = await self.catalog.refresh()
        self._last_refresh = time.time()
        self.prices = await self.price_feed.quotes(self._tokens_in(snapshot))
        return snapshot

    def view(self, state: Optional[ViewState] = None, now: Optional[float] = None) -> List[OrderView]:
        """按视图选择筛选排序，并附带估值"""
        snapshot = self.catalog.snapshot
        if snapshot is None:
            return []
        state = state or self.view_state
        if now is None:
            now = time.time()
        orders = apply_pipeline(
            snapshot,
            class_filter=state.class_filter,
            owner_filter=state.owner_filter,
            status_filter=state.status_filter,
            sort_field=state.sort_field,
            sort_direction=state.sort_direction,
            viewer_address=self.wallet or None,
            prices=self.prices,
            directory=self.directory,
            now=now,
            search=state.search,
        )
        rows = []
        for order in orders:
            valuation = value_of(order, self.prices, self.directory)
            rows.append(OrderView(
                order=order,
                status=order.display_status(now),
                valuation=valuation,
                discount=discount(order, self.prices, self.directory, valuation),
            ))
        return rows

    def set_view_state(self, state: ViewState):
        self.view_state = state
        save_view_state(self.store, state)

    # ------------------------------------------------------------------
    # 交易
    # ------------------------------------------------------------------

    async def _after_trade(self, result: TradeResult):
        """交易后重新读取目录；本地不做乐观修改"""
        if result.tx_ref:
            try:
                await self.catalog.refresh()
            except LedgerError as e:
                logger.error(f"Catalog refresh after trade failed: {e}")
        if self.notifier:
            await self.notifier.send(format_trade_result(result))

    async def execute(self, intent: TradeIntent) -> TradeResult:
        order = self.catalog.order(intent.order_id)
        if order is None:
            return TradeResult(success=False, order_id=intent.order_id).fail(
                TradeErrorKind.INVALID_INTENT, f"Order {intent.order_id} not found in catalog"
            )
        result = await self.executor.execute(order, intent, self.wallet)
        await self._after_trade(result)
        return result

    async def cancel(self, order_id: int) -> TradeResult:
        order = self.catalog.order(order_id)
        if order is None:
            return TradeResult(success=False, order_id=order_id).fail(
                TradeErrorKind.INVALID_INTENT, f"Order {order_id} not found in catalog"
            )
        result = await self.executor.cancel_order(order, self.wallet)
        await self._after_trade(result)
        return result

    # ------------------------------------------------------------------
    # 通知
    # ------------------------------------------------------------------

    async def notifications(self, now: Optional[float] = None) -> List[Notification]:
        return await self.reconciler.notifications(self.wallet, now)

    async def _push_new(self, notifications: List[Notification]):
        fresh = [n for n in notifications if n.is_new and n.id not in self._pushed]
        if not fresh:
            return
        self._pushed.update(n.id for n in fresh)
        if self.notifier:
            sent = await self.notifier.push_notifications(fresh)
            logger.info(f"Pushed {sent}/{len(fresh)} new notifications")

    async def sync_once(self, force_refresh: bool = False) -> List[Notification]:
        """一轮同步：按间隔刷新目录，然后对账通知"""
        if force_refresh or time.time() - self._last_refresh >= self.config.sync_interval:
            await self.refresh()
        if not self.wallet:
            return []
        notifications = await self.notifications()
        logger.info(
            f"{len(notifications)} notifications, "
            f"{self.reconciler.unread_count(notifications)} unread"
        )
        await self._push_new(notifications)
        return notifications

    async def run(self):
        """运行同步循环"""
        self._running = True
        logger.info(f"Starting sync loop for contract {self.ledger.contract}")
        logger.info(f"Wallet: {self.wallet or '(not connected)'}")
        while self._running:
            try:
                await self.sync_once()
            except LedgerError as e:
                logger.error(f"Sync failed: {e}")
            await asyncio.sleep(self.config.notification_interval)

    async def stop(self):
        """停止引擎"""
        self._running = False
        await self.ledger.close()
        await self.price_feed.close()
        logger.info("Engine stopped")
