"""链上交互异常定义"""
from typing import Any, Optional


class LedgerError(Exception):
    """链上交互基础异常"""


class TransportError(LedgerError):
    """RPC 网络/传输层失败（可重试）"""


class RpcError(LedgerError):
    """JSON-RPC 返回的错误对象"""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class LedgerRevert(RpcError):
    """合约执行回滚"""


class DataError(LedgerError):
    """链上记录缺失或无法解码"""


class ReceiptTimeout(LedgerError):
    """等待交易回执超时"""

    def __init__(self, tx_ref: str, timeout: float):
        super().__init__(f"Receipt for {tx_ref} not found after {timeout:.0f}s")
        self.tx_ref = tx_ref
        self.timeout = timeout


def is_revert(code: int, message: Optional[str]) -> bool:
    """判断 RPC 错误是否为合约回滚"""
    if code == 3:
        return True
    return bool(message) and "revert" in message.lower()
