"""链上 JSON-RPC 客户端"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import aiohttp

from ..config import LedgerConfig
from ..errors import DataError, LedgerRevert, ReceiptTimeout, RpcError, TransportError, is_revert
from ..models.order import OrderRecord
from . import abi
from .abi import Call, EventSpec, LogEntry

logger = logging.getLogger(__name__)


@dataclass
class Receipt:
    """交易回执"""
    tx_ref: str
    success: bool
    block_number: int
    gas_used: int = 0


class LedgerClient:
    """OTC 合约的只读查询 + 交易提交客户端"""

    def __init__(self, config: LedgerConfig):
        self.config = config
        self.contract = config.contract_address.lower()
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self._ids = itertools.count(1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _rpc(self, method: str, params: List[Any], retry: bool = True) -> Any:
        """发送 JSON-RPC 请求（传输失败重试；RPC 错误直接抛出）"""
        session = await self._get_session()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        attempts = self.config.max_retries if retry else 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                async with session.post(self.config.rpc_url, json=payload) as resp:
                    if resp.status == 429 or resp.status >= 500:
                        raise TransportError(f"HTTP {resp.status} from RPC")
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError as e:
                        raise TransportError(f"Non-JSON body from RPC (HTTP {resp.status})") from e
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, TransportError) as e:
                last_error = e
                logger.warning(f"RPC {method} failed (attempt {attempt + 1}/{attempts}): {e}")
                if attempt < attempts - 1:
                    await asyncio.sleep(self.config.retry_delay)
        else:
            raise TransportError(f"RPC {method} failed: {last_error}") from last_error

        if not isinstance(data, dict):
            raise TransportError(f"RPC {method} returned malformed response")
        error = data.get("error")
        if error:
            code = int(error.get("code", -1))
            message = str(error.get("message", ""))
            if is_revert(code, message):
                raise LedgerRevert(code, message, error.get("data"))
            raise RpcError(code, message, error.get("data"))
        return data.get("result")

    async def _eth_call(self, to: str, data: str) -> str:
        return await self._rpc("eth_call", [{"to": to, "data": data}, "latest"])

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    async def get_counter(self) -> int:
        """读取订单计数器"""
        result = await self._eth_call(self.contract, abi.GET_ORDER_COUNTER.encode_call())
        (counter,) = abi.GET_ORDER_COUNTER.decode_output(result)
        return int(counter)

    async def get_order(self, order_id: int) -> OrderRecord:
        """读取单个订单（解码失败抛 DataError）"""
        result = await self._eth_call(self.contract, abi.GET_ORDER_DETAILS.encode_call(order_id))
        return abi.decode_order(result)

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        result = await self._eth_call(token, abi.ERC20_ALLOWANCE.encode_call(owner, spender))
        (allowance,) = abi.ERC20_ALLOWANCE.decode_output(result)
        return int(allowance)

    async def get_block_number(self) -> int:
        result = await self._rpc("eth_blockNumber", [])
        return _hex_int(result, "block number")

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self._rpc("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            return 0
        return _hex_int(block.get("timestamp", "0x0"), "block timestamp")

    async def get_logs(
        self,
        event: EventSpec,
        filters: Optional[Dict[str, Any]] = None,
        from_block: Union[int, str] = "earliest",
        to_block: Union[int, str] = "latest",
    ) -> List[LogEntry]:
        """查询合约事件日志；无法解码的日志跳过"""
        params = {
            "address": self.contract,
            "topics": event.build_topics(filters),
            "fromBlock": hex(from_block) if isinstance(from_block, int) else from_block,
            "toBlock": hex(to_block) if isinstance(to_block, int) else to_block,
        }
        raw_logs = await self._rpc("eth_getLogs", [params]) or []
        entries = []
        for raw in raw_logs:
            try:
                entries.append(abi.decode_log(event, raw))
            except DataError as e:
                logger.debug(f"Skip undecodable {event.name} log: {e}")
        return entries

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    async def submit(self, call: Call) -> str:
        """通过签名端点提交交易，返回交易哈希"""
        tx: Dict[str, Any] = {"from": call.sender, "to": call.to, "data": call.data}
        if call.value:
            tx["value"] = hex(call.value)
        if call.gas:
            tx["gas"] = hex(call.gas)
        tx_ref = await self._rpc("eth_sendTransaction", [tx], retry=False)
        logger.info(f"Submitted {call.description or 'transaction'}: {tx_ref}")
        return tx_ref

    async def await_receipt(self, tx_ref: str, timeout: float) -> Receipt:
        """轮询交易回执，超时抛 ReceiptTimeout

        超时覆盖整个轮询过程（包括进行中的单次 RPC 请求及其重试）
        """
        try:
            return await asyncio.wait_for(self._poll_receipt(tx_ref), timeout)
        except asyncio.TimeoutError:
            raise ReceiptTimeout(tx_ref, timeout) from None

    async def _poll_receipt(self, tx_ref: str) -> Receipt:
        while True:
            try:
                receipt = await self._rpc("eth_getTransactionReceipt", [tx_ref])
            except TransportError as e:
                logger.warning(f"Receipt poll for {tx_ref} failed: {e}")
                receipt = None
            if receipt:
                return Receipt(
                    tx_ref=tx_ref,
                    success=_hex_int(receipt.get("status", "0x0"), "receipt status") == 1,
                    block_number=_hex_int(receipt.get("blockNumber", "0x0"), "receipt block"),
                    gas_used=_hex_int(receipt.get("gasUsed", "0x0"), "receipt gas"),
                )
            await asyncio.sleep(self.config.receipt_poll_interval)


def _hex_int(value: Any, what: str) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError) as e:
        raise DataError(f"Bad {what}: {value!r}") from e
