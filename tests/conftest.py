"""测试共用的伪造链上客户端与订单构造"""
import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from eth_abi import encode
from eth_utils import encode_hex

from otcbook.data import abi
from otcbook.data.ledger_client import Receipt
from otcbook.errors import ReceiptTimeout, TransportError
from otcbook.models.order import PERCENTAGE_SCALE, BuyLeg, OrderRecord, OrderStatus

OTC_ADDRESS = "0x342df6d98d06f03a20ae6e2c456344bb91ce33a2"
ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"

PMAXI = "0x0d86eb9f43c57f6ff3bc9e23d8f9d82503f0e84b"
PHEX = "0x2b591e99afe9f32eaa6214f7b7629768c40eeb39"    # index 2
WEHEX = "0x57fde0a71132198bbec939b98976993d8d89d225"   # index 4
PLSX = "0x95b303987a60c71504d99aa1b13b4da07b0790ab"    # index 1
INC = "0x2fa878ab3f87cc1c9737fc071108f904c0b0c95d"     # index 3

NOW = 1_700_000_000


def make_order(order_id=1, owner=ALICE, sell_token=PMAXI, sell_amount=1000 * 10 ** 8,
               legs=((2, 500 * 10 ** 8),), expiration=NOW + 86400,
               status=OrderStatus.ACTIVE, remaining=PERCENTAGE_SCALE) -> OrderRecord:
    return OrderRecord(
        order_id=order_id,
        owner=owner,
        sell_token=sell_token,
        sell_amount=sell_amount,
        buy_legs=tuple(BuyLeg(i, a) for i, a in legs),
        expiration_time=expiration,
        status=status,
        remaining_execution_percentage=remaining,
    )


def order_payload(order_id=3, indexes=(2, 0), amounts=(500, 7), status=0) -> str:
    """getOrderDetails 的 ABI 编码返回值"""
    value = (
        (order_id, ALICE),
        (order_id, 10 ** 18, 0, 1_700_000_000, status,
         (PHEX, 1000, list(indexes), list(amounts), 1_800_000_000)),
    )
    return encode_hex(encode([abi.ORDER_DETAILS_TYPE], [value]))


def uint_result(value: int) -> str:
    return encode_hex(encode(["uint256"], [value]))


def rpc_result(result):
    return {"result": result}


def rpc_error(code, message):
    return {"error": {"code": code, "message": message}}


def replies(*items):
    """按顺序返回应答，最后一个重复使用；可调用项在请求时才构造"""
    queue = list(items)

    def handler(params):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        return item() if callable(item) else item
    return handler


class FakeRpcNode:
    """按方法名脚本化应答的 JSON-RPC 测试节点

    handler 接收 params，返回 rpc_result/rpc_error 字典或原始 web.Response；
    也可以是协程（用于模拟挂起的请求）。
    """

    def __init__(self, **handlers):
        self.handlers = handlers
        self.requests = []
        self.release = None
        self._server = None

    @property
    def url(self) -> str:
        return str(self._server.make_url("/"))

    def calls(self, method):
        return [r for r in self.requests if r["method"] == method]

    async def hang(self, params):
        await self.release.wait()
        return rpc_result(None)

    async def _handle(self, request):
        body = await request.json()
        self.requests.append(body)
        handler = self.handlers.get(body["method"])
        if handler is None:
            reply = rpc_error(-32601, "the method does not exist")
        else:
            reply = handler(body["params"])
            if asyncio.iscoroutine(reply):
                reply = await reply
        if isinstance(reply, web.StreamResponse):
            return reply
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], **reply})

    async def __aenter__(self):
        self.release = asyncio.Event()
        app = web.Application()
        app.router.add_post("/", self._handle)
        self._server = TestServer(app)
        await self._server.start_server()
        return self

    async def __aexit__(self, *exc):
        self.release.set()
        await self._server.close()


class FakeLedger:
    """伪造链上客户端"""

    def __init__(self, orders=None, counter=None):
        self.contract = OTC_ADDRESS
        self.orders = {o.order_id: o for o in (orders or [])}
        self.counter = counter if counter is not None else len(self.orders)
        self.counter_error = None
        # order_id -> 剩余失败次数（-1 表示永远失败）
        self.failures = {}
        self.read_calls = []

        self.allowance = 0
        self.allowance_calls = 0
        self.grant_on_approve = True
        self.submitted = []
        self.submit_error = None
        self.receipt_success = True
        self.receipt_timeout = False

        self.block_number = 100
        self.logs = {}           # event name -> list of LogEntry
        self.log_queries = []

    async def get_counter(self):
        if self.counter_error:
            raise self.counter_error
        return self.counter

    async def get_order(self, order_id):
        self.read_calls.append(order_id)
        remaining = self.failures.get(order_id, 0)
        if remaining:
            self.failures[order_id] = remaining - 1 if remaining > 0 else remaining
            raise TransportError(f"read {order_id} failed")
        return self.orders[order_id]

    async def get_allowance(self, token, owner, spender):
        self.allowance_calls += 1
        return self.allowance

    async def submit(self, call):
        if self.submit_error:
            raise self.submit_error
        self.submitted.append(call)
        if call.description.startswith("approve") and self.grant_on_approve:
            self.allowance = 2 ** 256 - 1
        return f"0xtx{len(self.submitted)}"

    async def await_receipt(self, tx_ref, timeout):
        if self.receipt_timeout:
            raise ReceiptTimeout(tx_ref, timeout)
        return Receipt(tx_ref=tx_ref, success=self.receipt_success, block_number=self.block_number)

    async def get_block_number(self):
        return self.block_number

    async def get_block_timestamp(self, block_number):
        return NOW - 1000 + block_number

    async def get_logs(self, event, filters=None, from_block="earliest", to_block="latest"):
        self.log_queries.append((event.name, filters, from_block, to_block))
        start = from_block if isinstance(from_block, int) else 0
        end = to_block if isinstance(to_block, int) else self.block_number
        result = []
        for log in self.logs.get(event.name, []):
            if not start <= log.block_number <= end:
                continue
            if filters and any(log.args.get(k) != v for k, v in filters.items()):
                continue
            result.append(log)
        return result

    async def close(self):
        pass


@pytest.fixture
def ledger():
    return FakeLedger()
