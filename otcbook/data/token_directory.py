"""代币目录：地址/索引解析、原生币归一化、结算域与背书数据"""
import json
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional, Union

from ..models.token import TokenDescriptor

logger = logging.getLogger(__name__)

# 链上合约使用的原生币哨兵地址
NATIVE_ADDRESS = "0x000000000000000000000000000000000000dead"
NATIVE_ALIASES = {
    "0x0",
    "0x0000000000000000000000000000000000000000",
    NATIVE_ADDRESS,
}
WPLS_ADDRESS = "0xa1077a294dde1b09bb078844df40758a5d0f9a27"

DOMAIN_PULSECHAIN = "pulsechain"
DOMAIN_ETHEREUM = "ethereum"

# (address, ticker, decimals, name, domain, pair)
_TOKENS = [
    (NATIVE_ADDRESS, "PLS", 18, "Pulse", None, "0xe56043671df55de5cdf8459710433c10324de0ae"),
    (WPLS_ADDRESS, "WPLS", 18, "Wrapped PLS", None, "0xe56043671df55de5cdf8459710433c10324de0ae"),
    ("0x95b303987a60c71504d99aa1b13b4da07b0790ab", "PLSX", 18, "PulseX", None,
     "0x1b45b9148791d3a104184cd5dfe5ce57193a3ee9"),
    ("0x2fa878ab3f87cc1c9737fc071108f904c0b0c95d", "INC", 18, "Incentive", None,
     "0xf808bb6265e9ca27002c0a04562bf50d4fe37eaa"),
    ("0x2b591e99afe9f32eaa6214f7b7629768c40eeb39", "pHEX", 8, "HEX on Pls", DOMAIN_PULSECHAIN,
     "0xf1f4ee610b2babb05c635f726ef8b0c568c8dc65"),
    ("0x0d86eb9f43c57f6ff3bc9e23d8f9d82503f0e84b", "pMAXI", 8, "Maxi on PulseChain", DOMAIN_PULSECHAIN,
     "0xbfb22cc394c53c14dc8a5840a246dfdd2f7b2507"),
    ("0x6b32022693210cd2cfc466b9ac0085de8fc34ea6", "pDECI", 8, "DECI on PulseChain", DOMAIN_PULSECHAIN,
     "0x969af590981bb9d19ff38638fa3bd88aed13603a"),
    ("0x6b0956258ff7bd7645aa35369b55b61b8e6d6140", "pLUCKY", 8, "LUCKY on PulseChain", DOMAIN_PULSECHAIN,
     "0x52d4b3f479537a15d0b37b6cdbdb2634cc78525e"),
    ("0xf55cd1e399e1cc3d95303048897a680be3313308", "pTRIO", 8, "TRIO on PulseChain", DOMAIN_PULSECHAIN,
     "0x0b0f8f6c86c506b70e2a488a451e5ea7995d05c9"),
    ("0xe9f84d418b008888a992ff8c6d22389c2c3504e0", "pBASE", 8, "BASE on PulseChain", DOMAIN_PULSECHAIN,
     "0xb39490b46d02146f59e80c6061bb3e56b824d672"),
    ("0x57fde0a71132198bbec939b98976993d8d89d225", "weHEX", 8, "Wrapped HEX from Eth", DOMAIN_ETHEREUM,
     "0x922723fc4de3122f7dc837e2cd2b82dce9da81d2"),
    ("0x352511c9bc5d47dbc122883ed9353e987d10a3ba", "weMAXI", 8, "Wrapped MAXI from Eth", DOMAIN_ETHEREUM,
     "0x90b629cbbefc1efcae0b4cb027a51f0e0c3dcd76"),
    ("0x189a3ca3cc1337e85c7bc0a43b8d3457fd5aae89", "weDECI", 8, "Wrapped DECI from Eth", DOMAIN_ETHEREUM,
     "0x39e87e2baa67f3c7f1dd58f58014f23f97e3265e"),
    ("0x8924f56df76ca9e7babb53489d7bef4fb7caff19", "weLUCKY", 8, "Wrapped LUCKY from Eth", DOMAIN_ETHEREUM, None),
    ("0x0f3c6134f4022d85127476bc4d3787860e5c5569", "weTRIO", 8, "Wrapped TRIO from Eth", DOMAIN_ETHEREUM,
     "0x518b8ce0c7ce74a85774814fbfac7adcdf702b2c"),
    ("0xda073388422065fe8d3b5921ec2ae475bae57bed", "weBASE", 8, "Wrapped BASE from Eth", DOMAIN_ETHEREUM, None),
    ("0x15d38573d2feeb82e7ad5187ab8c1d52810b1f07", "weUSDC", 6, "Wrapped USDC from Eth", DOMAIN_ETHEREUM,
     "0x52ca8c5c6a5c7c56cf5e01bde9473b3b7f7c0b1e"),
    ("0x0cb6f5a34ad42ec934882a05265a7d5f59b51a2f", "weUSDT", 6, "Wrapped USDT from Eth", DOMAIN_ETHEREUM,
     "0xc8bbdb5a0652877eb1f774cba684eb8fbdd7bbb7"),
    ("0xefd766ccb38eaf1dfd701853bfce31359239f305", "weDAI", 18, "Wrapped DAI from Eth", DOMAIN_ETHEREUM, None),
]

# 合约买方代币索引表
TOKEN_INDEX_MAP: Dict[int, str] = {
    0: NATIVE_ADDRESS,
    1: "0x95b303987a60c71504d99aa1b13b4da07b0790ab",  # PLSX
    2: "0x2b591e99afe9f32eaa6214f7b7629768c40eeb39",  # pHEX
    3: "0x2fa878ab3f87cc1c9737fc071108f904c0b0c95d",  # INC
    4: "0x57fde0a71132198bbec939b98976993d8d89d225",  # weHEX
    5: "0x352511c9bc5d47dbc122883ed9353e987d10a3ba",  # weMAXI
    6: "0x189a3ca3cc1337e85c7bc0a43b8d3457fd5aae89",  # weDECI
    7: "0x8924f56df76ca9e7babb53489d7bef4fb7caff19",  # weLUCKY
    8: "0x0f3c6134f4022d85127476bc4d3787860e5c5569",  # weTRIO
    9: "0xda073388422065fe8d3b5921ec2ae475bae57bed",  # weBASE
}

# 以 1 美元计价的锚定资产
STABLE_PEGGED = {
    "0x15d38573d2feeb82e7ad5187ab8c1d52810b1f07",  # weUSDC
    "0x0cb6f5a34ad42ec934882a05265a7d5f59b51a2f",  # weUSDT
    "0xefd766ccb38eaf1dfd701853bfce31359239f305",  # weDAI
}

# MAXI 系列代币（筛选用的 "class A" 集合）
MAXI_FAMILY = {
    "0x2b591e99afe9f32eaa6214f7b7629768c40eeb39",  # pHEX
    "0x0d86eb9f43c57f6ff3bc9e23d8f9d82503f0e84b",  # pMAXI
    "0x6b32022693210cd2cfc466b9ac0085de8fc34ea6",  # pDECI
    "0x6b0956258ff7bd7645aa35369b55b61b8e6d6140",  # pLUCKY
    "0xf55cd1e399e1cc3d95303048897a680be3313308",  # pTRIO
    "0xe9f84d418b008888a992ff8c6d22389c2c3504e0",  # pBASE
    "0x57fde0a71132198bbec939b98976993d8d89d225",  # weHEX
    "0x352511c9bc5d47dbc122883ed9353e987d10a3ba",  # weMAXI
    "0x189a3ca3cc1337e85c7bc0a43b8d3457fd5aae89",  # weDECI
    "0x8924f56df76ca9e7babb53489d7bef4fb7caff19",  # weLUCKY
    "0x0f3c6134f4022d85127476bc4d3787860e5c5569",  # weTRIO
    "0xda073388422065fe8d3b5921ec2ae475bae57bed",  # weBASE
}

# 各结算域的背书资产（HEX）
BACKING_ASSET_BY_DOMAIN = {
    DOMAIN_PULSECHAIN: "0x2b591e99afe9f32eaa6214f7b7629768c40eeb39",
    DOMAIN_ETHEREUM: "0x57fde0a71132198bbec939b98976993d8d89d225",
}


def normalize_address(address: str) -> str:
    """统一小写；所有原生币哨兵归一到 NATIVE_ADDRESS"""
    addr = (address or "").strip().lower()
    if addr in NATIVE_ALIASES:
        return NATIVE_ADDRESS
    return addr


def is_native(address: str) -> bool:
    return normalize_address(address) == NATIVE_ADDRESS


def format_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


class TokenDirectory:
    """代币目录（纯查询，永不失败）"""

    def __init__(
        self,
        extra_tokens: Optional[Iterable[TokenDescriptor]] = None,
        index_map: Optional[Dict[int, str]] = None,
        backing_per_token: Optional[Dict[str, Decimal]] = None,
        class_a: Optional[Iterable[str]] = None,
    ):
        self._tokens: Dict[str, TokenDescriptor] = {}
        for address, ticker, decimals, name, domain, pair in _TOKENS:
            self._tokens[address] = TokenDescriptor(
                address=address,
                ticker=ticker,
                decimals=decimals,
                display_name=name,
                domain=domain,
                pair_address=pair,
                is_native=address == NATIVE_ADDRESS,
            )
        for token in extra_tokens or []:
            addr = normalize_address(token.address)
            self._tokens[addr] = token
        self._index_map = {
            idx: normalize_address(addr)
            for idx, addr in (index_map or TOKEN_INDEX_MAP).items()
        }
        self._backing = {
            normalize_address(addr): Decimal(str(value))
            for addr, value in (backing_per_token or {}).items()
        }
        self.class_a = frozenset(
            normalize_address(a) for a in (class_a if class_a is not None else MAXI_FAMILY)
        )

    @classmethod
    def from_backing_file(cls, path: str, **kwargs) -> "TokenDirectory":
        """从 JSON 文件加载背书数据"""
        backing: Dict[str, Decimal] = {}
        if path:
            try:
                with open(path, "r") as f:
                    data = json.load(f)
                backing = {addr: Decimal(str(v)) for addr, v in data.items()}
                logger.info(f"Loaded backing data for {len(backing)} tokens")
            except FileNotFoundError:
                logger.warning(f"Backing file not found: {path}")
            except (json.JSONDecodeError, AttributeError, ArithmeticError) as e:
                logger.warning(f"Failed to load backing file {path}: {e}")
        return cls(backing_per_token=backing, **kwargs)

    def resolve(self, address_or_index: Union[str, int]) -> TokenDescriptor:
        """按地址或买方索引解析代币；未知返回占位描述"""
        if isinstance(address_or_index, int):
            address = self._index_map.get(address_or_index)
            if address is None:
                return TokenDescriptor(
                    address="",
                    ticker=f"Token #{address_or_index}",
                    decimals=18,
                    display_name=f"Token #{address_or_index}",
                    known=False,
                )
            return self.resolve(address)

        address = normalize_address(address_or_index)
        token = self._tokens.get(address)
        if token:
            return token
        return TokenDescriptor(
            address=address,
            ticker=format_address(address) if len(address) > 10 else address,
            decimals=18,
            display_name="Unknown Token",
            known=False,
        )

    def address_for_index(self, index: int) -> Optional[str]:
        return self._index_map.get(index)

    def is_class_a(self, address: str) -> bool:
        return normalize_address(address) in self.class_a

    def is_stable(self, address: str) -> bool:
        return normalize_address(address) in STABLE_PEGGED

    def backing_per_token(self, address: str) -> Optional[Decimal]:
        return self._backing.get(normalize_address(address))

    def backing_asset(self, domain: Optional[str]) -> Optional[str]:
        if domain is None:
            return None
        return BACKING_ASSET_BY_DOMAIN.get(domain)
