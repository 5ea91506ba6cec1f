"""JSON-RPC 客户端测试（本地 aiohttp 测试节点）"""
import time
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from eth_abi import encode
from eth_utils import encode_hex

from otcbook.config import LedgerConfig
from otcbook.data import abi
from otcbook.data.ledger_client import LedgerClient
from otcbook.errors import DataError, LedgerRevert, ReceiptTimeout, RpcError, TransportError

from conftest import (
    BOB,
    OTC_ADDRESS,
    FakeRpcNode,
    order_payload,
    replies,
    rpc_error,
    rpc_result,
    uint_result,
)

HTML_FORBIDDEN = "<html>403 Forbidden</html>"


@asynccontextmanager
async def _connected(node, **overrides):
    defaults = dict(
        rpc_url=node.url,
        contract_address=OTC_ADDRESS,
        request_timeout=5,
        max_retries=3,
        retry_delay=0,
        receipt_poll_interval=0,
    )
    defaults.update(overrides)
    client = LedgerClient(LedgerConfig(**defaults))
    try:
        yield client
    finally:
        await client.close()


def _status(code):
    return lambda: web.Response(status=code)


@pytest.mark.asyncio
async def test_rate_limit_and_server_errors_are_retried():
    async with FakeRpcNode(
        eth_blockNumber=replies(_status(503), _status(429), rpc_result("0x10")),
    ) as node, _connected(node) as client:
        assert await client.get_block_number() == 16
        assert len(node.calls("eth_blockNumber")) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_raise_transport_error():
    async with FakeRpcNode(eth_blockNumber=replies(_status(502))) as node, _connected(node) as client:
        with pytest.raises(TransportError):
            await client.get_block_number()
        assert len(node.calls("eth_blockNumber")) == 3


@pytest.mark.asyncio
async def test_non_json_body_is_transport_error():
    """网关返回 HTML 页面时按传输失败处理并重试"""
    html = replies(lambda: web.Response(status=403, text=HTML_FORBIDDEN, content_type="text/html"))
    async with FakeRpcNode(eth_blockNumber=html) as node, _connected(node) as client:
        with pytest.raises(TransportError):
            await client.get_block_number()
        assert len(node.calls("eth_blockNumber")) == 3


@pytest.mark.asyncio
async def test_unreachable_node_is_transport_error():
    async with FakeRpcNode() as node:
        url = node.url
    client = LedgerClient(LedgerConfig(rpc_url=url, request_timeout=2, max_retries=2, retry_delay=0))
    try:
        with pytest.raises(TransportError):
            await client.get_block_number()
    finally:
        await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("code,message,expected", [
    (3, "execution reverted", LedgerRevert),
    (-32000, "execution reverted: Order expired", LedgerRevert),
    (-32000, "insufficient funds for gas * price + value", RpcError),
    (-32601, "the method does not exist", RpcError),
])
async def test_error_object_classification(code, message, expected):
    async with FakeRpcNode(eth_call=replies(rpc_error(code, message))) as node, _connected(node) as client:
        with pytest.raises(RpcError) as info:
            await client.get_counter()
        assert type(info.value) is expected
        assert info.value.code == code
        assert info.value.message == message
        # RPC 错误对象不重试
        assert len(node.calls("eth_call")) == 1


@pytest.mark.asyncio
async def test_reads_decode_contract_results():
    def contract(params):
        call = params[0]
        if call["data"] == abi.GET_ORDER_COUNTER.encode_call():
            return rpc_result(uint_result(7))
        return rpc_result(order_payload(order_id=int(call["data"][10:], 16)))

    async with FakeRpcNode(eth_call=contract) as node, _connected(node) as client:
        assert await client.get_counter() == 7
        order = await client.get_order(5)
        assert order.order_id == 5
        assert node.requests[0]["params"] == [
            {"to": OTC_ADDRESS, "data": abi.GET_ORDER_COUNTER.encode_call()}, "latest",
        ]


@pytest.mark.asyncio
async def test_bad_hex_results_are_data_errors():
    async with FakeRpcNode(
        eth_call=replies(rpc_result("0xzz")),
        eth_blockNumber=replies(rpc_result("pending")),
    ) as node, _connected(node) as client:
        with pytest.raises(DataError):
            await client.get_counter()
        with pytest.raises(DataError):
            await client.get_order(1)
        with pytest.raises(DataError):
            await client.get_block_number()


@pytest.mark.asyncio
async def test_submit_is_not_retried():
    async with FakeRpcNode(eth_sendTransaction=replies(_status(503))) as node, _connected(node) as client:
        with pytest.raises(TransportError):
            await client.submit(abi.Call(to=OTC_ADDRESS, data="0x01", sender=BOB))
        assert len(node.calls("eth_sendTransaction")) == 1


@pytest.mark.asyncio
async def test_submit_sends_value_and_gas_as_hex():
    async with FakeRpcNode(eth_sendTransaction=replies(rpc_result("0xabc"))) as node, _connected(node) as client:
        call = abi.Call(to=OTC_ADDRESS, data="0x01", value=10, sender=BOB, gas=21000)
        assert await client.submit(call) == "0xabc"
        (request,) = node.calls("eth_sendTransaction")
        assert request["params"] == [
            {"from": BOB, "to": OTC_ADDRESS, "data": "0x01", "value": "0xa", "gas": "0x5208"},
        ]


@pytest.mark.asyncio
async def test_await_receipt_polls_until_mined():
    mined = {"status": "0x1", "blockNumber": "0x20", "gasUsed": "0x5208"}
    async with FakeRpcNode(
        eth_getTransactionReceipt=replies(rpc_result(None), _status(500), rpc_result(mined)),
    ) as node, _connected(node) as client:
        receipt = await client.await_receipt("0xabc", timeout=5)
        assert receipt.success is True
        assert receipt.block_number == 32
        assert receipt.gas_used == 21000
        assert len(node.calls("eth_getTransactionReceipt")) == 3


@pytest.mark.asyncio
async def test_await_receipt_reports_reverted_status():
    reverted = {"status": "0x0", "blockNumber": "0x21", "gasUsed": "0x1"}
    async with FakeRpcNode(
        eth_getTransactionReceipt=replies(rpc_result(reverted)),
    ) as node, _connected(node) as client:
        receipt = await client.await_receipt("0xabc", timeout=5)
        assert receipt.success is False
        assert receipt.block_number == 33


@pytest.mark.asyncio
async def test_await_receipt_times_out_while_request_in_flight():
    """单次请求挂起时，超时仍按总时长生效"""
    async with FakeRpcNode() as node, _connected(node, request_timeout=5, max_retries=3) as client:
        node.handlers["eth_getTransactionReceipt"] = node.hang
        start = time.monotonic()
        with pytest.raises(ReceiptTimeout) as info:
            await client.await_receipt("0xabc", timeout=0.3)
        elapsed = time.monotonic() - start

        assert elapsed < 1.5
        assert info.value.tx_ref == "0xabc"


@pytest.mark.asyncio
async def test_await_receipt_times_out_when_never_mined():
    async with FakeRpcNode(
        eth_getTransactionReceipt=replies(rpc_result(None)),
    ) as node, _connected(node, receipt_poll_interval=0.05) as client:
        with pytest.raises(ReceiptTimeout):
            await client.await_receipt("0xabc", timeout=0.3)
        assert len(node.calls("eth_getTransactionReceipt")) >= 2


@pytest.mark.asyncio
async def test_get_logs_sends_hex_block_range_and_skips_bad_logs():
    good = {
        "topics": [abi.ORDER_EXECUTED.topic, encode_hex(encode(["address"], [BOB]))],
        "data": encode_hex(encode(["uint256"], [42])),
        "blockNumber": "0xf",
        "transactionHash": "0xAA",
        "logIndex": "0x0",
    }
    foreign = dict(good, topics=[abi.ORDER_CREATED.topic])
    async with FakeRpcNode(eth_getLogs=replies(rpc_result([good, foreign]))) as node, _connected(node) as client:
        entries = await client.get_logs(abi.ORDER_EXECUTED, {"user": BOB}, from_block=10, to_block=20)

        assert [(e.args["orderId"], e.block_number) for e in entries] == [(42, 15)]
        (request,) = node.calls("eth_getLogs")
        assert request["params"] == [{
            "address": OTC_ADDRESS,
            "topics": abi.ORDER_EXECUTED.build_topics({"user": BOB}),
            "fromBlock": "0xa",
            "toBlock": "0x14",
        }]

        await client.get_logs(abi.ORDER_UPDATED)
        last = node.calls("eth_getLogs")[-1]["params"][0]
        assert (last["fromBlock"], last["toBlock"]) == ("earliest", "latest")
