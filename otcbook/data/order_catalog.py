"""订单目录：分批拉取链上订单并生成快照"""
import asyncio
import logging
import time
from typing import Dict, List, Optional, Set, Tuple

from ..config import CatalogConfig
from ..errors import DataError, LedgerError, TransportError
from ..models.order import CatalogSnapshot, OrderRecord
from .ledger_client import LedgerClient

logger = logging.getLogger(__name__)


class OrderCatalog:
    """订单目录

    refresh() 读取订单计数器 N，按 batch_size 将 [1..N] 分批：批内并发读取，
    批与批之间串行并间隔 batch_delay。单个订单读取失败只会让该订单缺席快照
    并标记 partial；计数器读取失败则整个刷新失败。
    """

    def __init__(self, ledger: LedgerClient, config: Optional[CatalogConfig] = None):
        self.ledger = ledger
        self.config = config or CatalogConfig()
        self._snapshot: Optional[CatalogSnapshot] = None
        self.regressions = 0

    @property
    def snapshot(self) -> Optional[CatalogSnapshot]:
        return self._snapshot

    def order(self, order_id: int) -> Optional[OrderRecord]:
        if self._snapshot is None:
            return None
        return self._snapshot.get(order_id)

    @staticmethod
    def batches(counter: int, batch_size: int) -> List[List[int]]:
        """将 [1..counter] 切分为固定大小的批次"""
        size = max(1, batch_size)
        ids = list(range(1, counter + 1))
        return [ids[i:i + size] for i in range(0, len(ids), size)]

    async def _read_one(self, order_id: int) -> Tuple[int, Optional[OrderRecord], Optional[Exception]]:
        try:
            return order_id, await self.ledger.get_order(order_id), None
        except (LedgerError, asyncio.TimeoutError) as e:
            return order_id, None, e

    async def _read_batch(self, batch: List[int]) -> Tuple[Dict[int, OrderRecord], Set[int]]:
        """读取一个批次；传输失败的订单在批次级别重试"""
        orders: Dict[int, OrderRecord] = {}
        failed: Set[int] = set()
        pending = list(batch)

        for attempt in range(self.config.batch_retries + 1):
            results = await asyncio.gather(*(self._read_one(oid) for oid in pending))
            retry = []
            for oid, order, error in results:
                if order is not None:
                    if order.order_id != oid:
                        logger.warning(f"Order {oid} decoded with mismatched id {order.order_id}")
                    orders[oid] = order
                elif isinstance(error, DataError):
                    logger.warning(f"Order {oid} skipped: {error}")
                    failed.add(oid)
                else:
                    retry.append(oid)
            if not retry:
                break
            if attempt < self.config.batch_retries:
                logger.info(f"Retrying {len(retry)} failed order reads: {retry}")
                await asyncio.sleep(self.config.batch_delay)
                pending = retry
            else:
                for oid in retry:
                    logger.warning(f"Order {oid} read failed, omitted from snapshot")
                failed.update(retry)
        return orders, failed

    def _check_progress(self, orders: Dict[int, OrderRecord]) -> None:
        """remaining 百分比只能单调不增；出现回升时记录告警（以链上为准）"""
        if self._snapshot is None:
            return
        for oid, order in orders.items():
            previous = self._snapshot.get(oid)
            if previous is None:
                continue
            if order.remaining_execution_percentage > previous.remaining_execution_percentage:
                self.regressions += 1
                logger.warning(
                    f"Order {oid} remaining percentage increased "
                    f"{previous.remaining_execution_percentage} -> "
                    f"{order.remaining_execution_percentage}"
                )

    async def refresh(self) -> CatalogSnapshot:
        """拉取全部订单并原子替换快照"""
        started = time.time()
        try:
            counter = await self.ledger.get_counter()
        except (LedgerError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to read order counter: {e}")
            if isinstance(e, LedgerError):
                raise
            raise TransportError(f"Order counter read timed out: {e}") from e

        orders: Dict[int, OrderRecord] = {}
        failed: Set[int] = set()
        batches = self.batches(counter, self.config.batch_size)
        for i, batch in enumerate(batches):
            batch_orders, batch_failed = await self._read_batch(batch)
            orders.update(batch_orders)
            failed.update(batch_failed)
            if i < len(batches) - 1:
                await asyncio.sleep(self.config.batch_delay)

        self._check_progress(orders)
        snapshot = CatalogSnapshot.build(orders, counter, sorted(failed))
        self._snapshot = snapshot

        logger.info(
            f"Catalog refreshed: {len(snapshot)}/{counter} orders "
            f"({len(snapshot.active_ids)} active, {len(snapshot.completed_ids)} completed, "
            f"{len(snapshot.cancelled_ids)} cancelled) in {time.time() - started:.1f}s"
        )
        if snapshot.partial:
            logger.warning(f"Snapshot is partial, missing orders: {list(snapshot.failed_ids)}")
        return snapshot
