"""交易执行器：授权 -> 执行 -> 确认"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ..config import ExecutionConfig
from ..data import abi
from ..data.ledger_client import LedgerClient
from ..data.token_directory import TokenDirectory, is_native, normalize_address
from ..errors import LedgerError, LedgerRevert, ReceiptTimeout, RpcError
from ..models.order import OrderRecord, TradeIntent
from .amounts import max_amounts

logger = logging.getLogger(__name__)

# 钱包层返回的拒签提示（EIP-1193 code 4001）
USER_REJECTED_CODE = 4001
USER_REJECTED_PHRASES = (
    "user rejected",
    "user denied",
    "rejected by user",
    "denied transaction signature",
    "request rejected",
    "user cancelled",
)
USER_REJECTED_MESSAGE = "Transaction was rejected by user."


class TradeState(Enum):
    IDLE = "idle"
    APPROVING = "approving"
    EXECUTING = "executing"
    CONFIRMING = "confirming"
    SETTLED = "settled"
    FAILED = "failed"


class TradeErrorKind(Enum):
    WALLET_NOT_CONNECTED = "walletNotConnected"
    INVALID_INTENT = "invalidIntent"
    SAME_TOKEN_ON_BOTH_SIDES = "sameTokenOnBothSides"
    USER_REJECTED = "userRejected"
    SETTLEMENT_REVERTED = "settlementReverted"
    CONFIRMATION_TIMEOUT = "confirmationTimeout"
    UNKNOWN = "unknown"


@dataclass
class TradeResult:
    """交易执行结果"""
    success: bool
    order_id: int
    state: TradeState = TradeState.IDLE
    history: List[TradeState] = field(default_factory=lambda: [TradeState.IDLE])
    error_kind: Optional[TradeErrorKind] = None
    error: str = ""
    detail: str = ""               # 链上原始错误信息
    tx_ref: str = ""
    approval_tx_ref: str = ""
    approval_confirmed: bool = True
    token: str = ""
    leg_position: int = -1
    amount: int = 0
    value: int = 0

    def transition(self, state: TradeState):
        logger.info(f"Order {self.order_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, kind: TradeErrorKind, message: str, detail: str = "") -> "TradeResult":
        self.success = False
        self.error_kind = kind
        self.error = message
        self.detail = detail
        self.transition(TradeState.FAILED)
        logger.error(f"Order {self.order_id} trade failed [{kind.value}]: {message}")
        return self

    def settle(self) -> "TradeResult":
        self.success = True
        self.transition(TradeState.SETTLED)
        return self


def is_user_rejection(error: Exception) -> bool:
    if isinstance(error, RpcError) and error.code == USER_REJECTED_CODE:
        return True
    text = str(getattr(error, "message", "") or error).lower()
    return any(phrase in text for phrase in USER_REJECTED_PHRASES)


def classify_error(error: Exception) -> Tuple[TradeErrorKind, str, str]:
    """异常 -> (错误类型, 规范化提示, 原始信息)"""
    raw = str(error)
    if is_user_rejection(error):
        return TradeErrorKind.USER_REJECTED, USER_REJECTED_MESSAGE, raw
    if isinstance(error, LedgerRevert):
        return (
            TradeErrorKind.SETTLEMENT_REVERTED,
            "Transaction failed. Please check the transaction details and try again.",
            error.message,
        )
    if isinstance(error, ReceiptTimeout):
        return (
            TradeErrorKind.CONFIRMATION_TIMEOUT,
            f"Transaction timed out after {error.timeout:.0f} seconds. The transaction may "
            f"still be pending. Please check your wallet or block explorer.",
            raw,
        )
    return TradeErrorKind.UNKNOWN, raw or error.__class__.__name__, raw


class TradeExecutor:
    """按订单执行对手方出价的状态机

    IDLE -> (需要授权) APPROVING -> EXECUTING -> CONFIRMING -> SETTLED | FAILED

    执行器从不修改本地订单，最终状态以下一次目录刷新为准。
    """

    def __init__(self, ledger: LedgerClient, directory: TokenDirectory,
                 config: Optional[ExecutionConfig] = None, wallet: str = ""):
        self.ledger = ledger
        self.directory = directory
        self.config = config or ExecutionConfig()
        self.wallet = wallet.lower() if wallet else ""

    @property
    def spender(self) -> str:
        return self.ledger.contract

    def _resolve_leg(self, order: OrderRecord, intent: TradeIntent) -> Optional[Tuple[int, str, int]]:
        """取第一条出价为正的买方腿：(腿序号, 代币地址, 数量)"""
        offered = {normalize_address(a): v for a, v in intent.amounts.items()}
        for position, leg in enumerate(order.buy_legs):
            address = self.directory.address_for_index(leg.token_index)
            if address and offered.get(address, 0) > 0:
                return position, address, offered[address]
        return None

    def validate(self, order: OrderRecord, intent: TradeIntent, result: TradeResult) -> Optional[Tuple[int, str, int]]:
        if intent.order_id != order.order_id:
            result.fail(TradeErrorKind.INVALID_INTENT,
                        f"Intent targets order {intent.order_id}, not {order.order_id}")
            return None
        if not intent.has_positive_amount:
            result.fail(TradeErrorKind.INVALID_INTENT, "Enter an amount for at least one token")
            return None

        maxima = max_amounts(order, self.directory)
        for address, amount in intent.positive_amounts().items():
            addr = normalize_address(address)
            if addr not in maxima:
                result.fail(TradeErrorKind.INVALID_INTENT,
                            f"Token {address} is not accepted by order {order.order_id}")
                return None
            if amount > maxima[addr]:
                result.fail(TradeErrorKind.INVALID_INTENT,
                            f"Amount exceeds remaining order size for {address}")
                return None

        leg = self._resolve_leg(order, intent)
        if leg is None:
            result.fail(TradeErrorKind.INVALID_INTENT, "Enter an amount for at least one token")
            return None
        if normalize_address(leg[1]) == normalize_address(order.sell_token):
            result.fail(TradeErrorKind.SAME_TOKEN_ON_BOTH_SIDES,
                        "Cannot trade a token for itself")
            return None
        return leg

    async def _wait_for_allowance(self, token: str, owner: str, amount: int) -> bool:
        """轮询授权额度，有上限次数"""
        for attempt in range(self.config.approval_poll_attempts):
            try:
                allowance = await self.ledger.get_allowance(token, owner, self.spender)
                if allowance >= amount:
                    logger.info(f"Allowance confirmed after {attempt + 1} checks")
                    return True
            except LedgerError as e:
                logger.warning(f"Allowance check failed: {e}")
            await asyncio.sleep(self.config.approval_poll_interval)
        return False

    async def _approve(self, token: str, owner: str, amount: int, result: TradeResult) -> bool:
        """提交授权；轮询超时只记录告警并继续执行"""
        result.transition(TradeState.APPROVING)
        call = abi.Call(
            to=token,
            data=abi.ERC20_APPROVE.encode_call(self.spender, amount),
            sender=owner,
            gas=self.config.approval_gas,
            description=f"approve {self.directory.resolve(token).ticker}",
        )
        try:
            result.approval_tx_ref = await self.ledger.submit(call)
        except (LedgerError, asyncio.TimeoutError) as e:
            kind, message, detail = classify_error(e)
            result.fail(kind, message, detail)
            return False

        result.approval_confirmed = await self._wait_for_allowance(token, owner, amount)
        if not result.approval_confirmed:
            logger.warning(
                f"Approval for order {result.order_id} not visible after "
                f"{self.config.approval_poll_attempts} checks, proceeding with execution"
            )
        return True

    async def _confirm(self, tx_ref: str, result: TradeResult) -> TradeResult:
        result.transition(TradeState.CONFIRMING)
        try:
            receipt = await self.ledger.await_receipt(tx_ref, self.config.confirmation_timeout)
        except (LedgerError, asyncio.TimeoutError) as e:
            if isinstance(e, asyncio.TimeoutError):
                e = ReceiptTimeout(tx_ref, self.config.confirmation_timeout)
            kind, message, detail = classify_error(e)
            return result.fail(kind, message, detail)

        if not receipt.success:
            return result.fail(
                TradeErrorKind.SETTLEMENT_REVERTED,
                "Transaction failed. Please check the transaction details and try again.",
                f"Transaction {tx_ref} reverted in block {receipt.block_number}",
            )
        logger.info(f"Order {result.order_id} settled in block {receipt.block_number}: {tx_ref}")
        return result.settle()

    async def execute(self, order: OrderRecord, intent: TradeIntent,
                      wallet: Optional[str] = None) -> TradeResult:
        """执行对订单的一次出价"""
        result = TradeResult(success=False, order_id=order.order_id)
        owner = (wallet or self.wallet or "").lower()
        if not owner:
            return result.fail(TradeErrorKind.WALLET_NOT_CONNECTED,
                               "Wallet not connected. Please connect your wallet.")

        leg = self.validate(order, intent, result)
        if leg is None:
            return result
        position, token, amount = leg
        result.token = token
        result.leg_position = position
        result.amount = amount

        native = is_native(token)
        if not native:
            try:
                allowance = await self.ledger.get_allowance(token, owner, self.spender)
            except (LedgerError, asyncio.TimeoutError) as e:
                kind, message, detail = classify_error(e)
                return result.fail(kind, message, detail)
            if allowance < amount:
                if not await self._approve(token, owner, amount, result):
                    return result

        result.transition(TradeState.EXECUTING)
        result.value = amount if native else 0
        call = abi.Call(
            to=self.spender,
            data=abi.EXECUTE_ORDER.encode_call(order.order_id, position, amount),
            value=result.value,
            sender=owner,
            description=f"executeOrder #{order.order_id}",
        )
        try:
            result.tx_ref = await self.ledger.submit(call)
        except (LedgerError, asyncio.TimeoutError) as e:
            kind, message, detail = classify_error(e)
            return result.fail(kind, message, detail)

        return await self._confirm(result.tx_ref, result)

    async def cancel_order(self, order: OrderRecord, wallet: Optional[str] = None) -> TradeResult:
        """撤销自己的订单"""
        result = TradeResult(success=False, order_id=order.order_id)
        owner = (wallet or self.wallet or "").lower()
        if not owner:
            return result.fail(TradeErrorKind.WALLET_NOT_CONNECTED,
                               "Wallet not connected. Please connect your wallet.")
        if not order.is_owned_by(owner):
            return result.fail(TradeErrorKind.INVALID_INTENT,
                               "Only the order owner can cancel this order")

        result.transition(TradeState.EXECUTING)
        call = abi.Call(
            to=self.spender,
            data=abi.CANCEL_ORDER.encode_call(order.order_id),
            sender=owner,
            description=f"cancelOrder #{order.order_id}",
        )
        try:
            result.tx_ref = await self.ledger.submit(call)
        except (LedgerError, asyncio.TimeoutError) as e:
            kind, message, detail = classify_error(e)
            return result.fail(kind, message, detail)

        return await self._confirm(result.tx_ref, result)
