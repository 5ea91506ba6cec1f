"""OTC 合约 ABI：调用编码、返回值与事件日志解码"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
)

from ..errors import DataError
from ..models.order import BuyLeg, OrderRecord, OrderStatus

# getOrderDetails 返回的 CompleteOrderDetails 结构：
# ((orderIndex, orderOwner),
#  (orderId, remainingExecutionPercentage, redemeedPercentage, lastUpdateTime, status,
#   (sellToken, sellAmount, buyTokensIndex[], buyAmounts[], expirationTime)))
ORDER_DETAILS_TYPE = (
    "((uint256,address),"
    "(uint256,uint256,uint256,uint32,uint8,(address,uint256,uint256[],uint256[],uint256)))"
)


@dataclass(frozen=True)
class FunctionSpec:
    """合约函数签名"""
    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_call(self, *args) -> str:
        """编码调用数据（0x 前缀十六进制）"""
        payload = encode(list(self.inputs), list(args)) if self.inputs else b""
        return encode_hex(self.selector + payload)

    def decode_output(self, data: str) -> Tuple[Any, ...]:
        try:
            raw = decode_hex(data) if data else b""
            return decode(list(self.outputs), raw)
        except (DecodingError, ValueError, TypeError, OverflowError) as e:
            raise DataError(f"Cannot decode {self.name} output: {e}") from e


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    """合约事件签名"""
    name: str
    inputs: Tuple[EventInput, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic(self) -> str:
        return encode_hex(event_signature_to_log_topic(self.signature))

    def build_topics(self, filters: Optional[Dict[str, Any]] = None) -> List[Optional[str]]:
        """按 indexed 参数过滤条件构造 topics 数组"""
        filters = filters or {}
        topics: List[Optional[str]] = [self.topic]
        for item in self.inputs:
            if not item.indexed:
                continue
            value = filters.get(item.name)
            topics.append(encode_hex(encode([item.type], [value])) if value is not None else None)
        while topics and topics[-1] is None:
            topics.pop()
        return topics


@dataclass
class LogEntry:
    """已解码的事件日志"""
    event: str
    args: Dict[str, Any]
    block_number: int
    tx_hash: str
    log_index: int = 0


@dataclass
class Call:
    """待提交的合约调用"""
    to: str
    data: str
    value: int = 0
    sender: str = ""
    gas: Optional[int] = None
    description: str = ""


GET_ORDER_COUNTER = FunctionSpec("getOrderCounter", outputs=("uint256",))
GET_ORDER_DETAILS = FunctionSpec("getOrderDetails", inputs=("uint256",), outputs=(ORDER_DETAILS_TYPE,))
EXECUTE_ORDER = FunctionSpec("executeOrder", inputs=("uint256", "uint256", "uint256"))
CANCEL_ORDER = FunctionSpec("cancelOrder", inputs=("uint256",))
ERC20_ALLOWANCE = FunctionSpec("allowance", inputs=("address", "address"), outputs=("uint256",))
ERC20_APPROVE = FunctionSpec("approve", inputs=("address", "uint256"), outputs=("bool",))

ORDER_EXECUTED = EventSpec("OrderExecuted", (
    EventInput("user", "address", indexed=True),
    EventInput("orderId", "uint256"),
))
ORDER_CREATED = EventSpec("OrderCreated", (
    EventInput("user", "address", indexed=True),
    EventInput("orderId", "uint256"),
))
ORDER_UPDATED = EventSpec("OrderUpdated", (
    EventInput("orderId", "uint256"),
))


def decode_order(data: str) -> OrderRecord:
    """解码 getOrderDetails 返回值为 OrderRecord；任何结构异常都转为 DataError"""
    (details,) = GET_ORDER_DETAILS.decode_output(data)
    try:
        user_details, with_id = details
        _, owner = user_details
        order_id, remaining, redeemed, last_update, status, order_details = with_id
        sell_token, sell_amount, buy_indexes, buy_amounts, expiration = order_details
    except (TypeError, ValueError) as e:
        raise DataError(f"Malformed order struct: {e}") from e

    if len(buy_indexes) != len(buy_amounts):
        raise DataError(
            f"Order {order_id}: {len(buy_indexes)} buy indexes vs {len(buy_amounts)} amounts"
        )
    try:
        order_status = OrderStatus(status)
    except ValueError as e:
        raise DataError(f"Order {order_id}: unknown status {status}") from e

    return OrderRecord(
        order_id=int(order_id),
        owner=owner.lower(),
        sell_token=sell_token.lower(),
        sell_amount=int(sell_amount),
        buy_legs=tuple(BuyLeg(int(i), int(a)) for i, a in zip(buy_indexes, buy_amounts)),
        expiration_time=int(expiration),
        status=order_status,
        remaining_execution_percentage=int(remaining),
        last_update_time=int(last_update),
        redeemed_percentage=int(redeemed),
    )


def decode_log(event: EventSpec, raw: Dict[str, Any]) -> LogEntry:
    """解码 eth_getLogs 返回的单条日志"""
    topics: Sequence[str] = raw.get("topics") or []
    if not topics or topics[0].lower() != event.topic.lower():
        raise DataError(f"Log is not a {event.name} event")

    args: Dict[str, Any] = {}
    indexed = [i for i in event.inputs if i.indexed]
    plain = [i for i in event.inputs if not i.indexed]
    try:
        for item, topic in zip(indexed, topics[1:]):
            (args[item.name],) = decode([item.type], decode_hex(topic))
        if plain:
            values = decode([i.type for i in plain], decode_hex(raw.get("data") or "0x"))
            for item, value in zip(plain, values):
                args[item.name] = value
        block_number = int(raw.get("blockNumber", "0x0"), 16)
        log_index = int(raw.get("logIndex", "0x0"), 16)
    except (DecodingError, ValueError, TypeError) as e:
        raise DataError(f"Cannot decode {event.name} log: {e}") from e

    for key, value in args.items():
        if isinstance(value, str):
            args[key] = value.lower()

    return LogEntry(
        event=event.name,
        args=args,
        block_number=block_number,
        tx_hash=(raw.get("transactionHash") or "").lower(),
        log_index=log_index,
    )
