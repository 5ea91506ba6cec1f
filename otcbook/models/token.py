"""代币与价格数据模型"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional


@dataclass(frozen=True)
class TokenDescriptor:
    """代币描述"""
    address: str
    ticker: str
    decimals: int
    display_name: str
    domain: Optional[str] = None        # 结算域（如 pulsechain / ethereum）
    pair_address: Optional[str] = None  # 报价用交易对
    is_native: bool = False
    known: bool = True

    def to_units(self, raw_amount: int) -> Decimal:
        """最小单位 -> 代币数量"""
        return Decimal(raw_amount) / (Decimal(10) ** self.decimals)


@dataclass
class PriceQuote:
    """现货报价；available=False 表示价格未知（不是错误）"""
    price: float = 0.0
    change: Dict[str, Optional[float]] = field(default_factory=dict)  # m5/h1/h6/h24
    liquidity_usd: float = 0.0
    available: bool = True

    @classmethod
    def unavailable(cls) -> "PriceQuote":
        return cls(price=0.0, available=False)

    @property
    def usd(self) -> Optional[Decimal]:
        if not self.available or self.price <= 0:
            return None
        return Decimal(str(self.price))
