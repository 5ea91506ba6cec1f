"""配置管理模块"""
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv


@dataclass
class LedgerConfig:
    """链上 RPC 与合约配置"""
    rpc_url: str = "https://rpc.pulsechain.com"
    contract_address: str = "0x342DF6d98d06f03a20Ae6E2c456344Bb91cE33a2"
    wallet_address: str = ""  # 为空表示钱包未连接
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    receipt_poll_interval: float = 1.0


@dataclass
class CatalogConfig:
    """订单目录批量拉取配置"""
    batch_size: int = 10
    batch_delay: float = 0.2  # 批次间隔（秒），避免触发 RPC 限流
    batch_retries: int = 1    # 批次内传输失败的重试轮数


@dataclass
class ExecutionConfig:
    """交易执行配置"""
    approval_poll_attempts: int = 30
    approval_poll_interval: float = 1.0
    confirmation_timeout: float = 60.0
    approval_gas: int = 100000


@dataclass
class PriceConfig:
    """价格源配置"""
    base_url: str = "https://api.dexscreener.com/latest/dex"
    chain_name: str = "pulsechain"
    batch_size: int = 30       # DexScreener 单次最多 30 个交易对
    batch_delay: float = 0.2
    request_timeout: float = 15.0


@dataclass
class StoreConfig:
    """本地持久化配置"""
    state_file: str = "otcbook_state.json"
    backing_file: str = ""  # 背书价格参考数据（JSON: 地址 -> 每枚背书数量）


@dataclass
class TelegramConfig:
    """Telegram 通知配置"""
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""
    topic_id: str = ""  # 群组话题ID


@dataclass
class LogConfig:
    """日志配置"""
    level: str = "INFO"
    file: str = "otcbook.log"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5  # 保留5个备份文件


@dataclass
class Config:
    """主配置类"""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    price: PriceConfig = field(default_factory=PriceConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    log: LogConfig = field(default_factory=LogConfig)
    sync_interval: float = 60.0
    notification_interval: float = 30.0


def load_config() -> Config:
    """从环境变量加载配置"""
    load_dotenv()

    ledger_config = LedgerConfig(
        rpc_url=os.getenv("RPC_URL", "https://rpc.pulsechain.com"),
        contract_address=os.getenv(
            "OTC_CONTRACT_ADDRESS", "0x342DF6d98d06f03a20Ae6E2c456344Bb91cE33a2"
        ),
        wallet_address=os.getenv("WALLET_ADDRESS", ""),
        request_timeout=float(os.getenv("RPC_TIMEOUT", "30")),
        max_retries=int(os.getenv("RPC_MAX_RETRIES", "3")),
        retry_delay=float(os.getenv("RPC_RETRY_DELAY", "1.0")),
        receipt_poll_interval=float(os.getenv("RECEIPT_POLL_INTERVAL", "1.0")),
    )

    catalog_config = CatalogConfig(
        batch_size=int(os.getenv("CATALOG_BATCH_SIZE", "10")),
        batch_delay=float(os.getenv("CATALOG_BATCH_DELAY", "0.2")),
        batch_retries=int(os.getenv("CATALOG_BATCH_RETRIES", "1")),
    )

    execution_config = ExecutionConfig(
        approval_poll_attempts=int(os.getenv("APPROVAL_POLL_ATTEMPTS", "30")),
        approval_poll_interval=float(os.getenv("APPROVAL_POLL_INTERVAL", "1.0")),
        confirmation_timeout=float(os.getenv("CONFIRMATION_TIMEOUT", "60")),
        approval_gas=int(os.getenv("APPROVAL_GAS", "100000")),
    )

    price_config = PriceConfig(
        base_url=os.getenv("DEXSCREENER_URL", "https://api.dexscreener.com/latest/dex"),
        chain_name=os.getenv("CHAIN_NAME", "pulsechain"),
        batch_size=int(os.getenv("PRICE_BATCH_SIZE", "30")),
        batch_delay=float(os.getenv("PRICE_BATCH_DELAY", "0.2")),
    )

    store_config = StoreConfig(
        state_file=os.getenv("STATE_FILE", "otcbook_state.json"),
        backing_file=os.getenv("BACKING_FILE", ""),
    )

    telegram_config = TelegramConfig(
        enabled=os.getenv("TG_BOT_TOKEN", "") != "",
        bot_token=os.getenv("TG_BOT_TOKEN", ""),
        chat_id=os.getenv("TG_CHAT_ID", ""),
        topic_id=os.getenv("TG_TOPIC_ID", ""),
    )

    log_config = LogConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        file=os.getenv("LOG_FILE", "otcbook.log"),
        max_bytes=int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
        backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
    )

    return Config(
        ledger=ledger_config,
        catalog=catalog_config,
        execution=execution_config,
        price=price_config,
        store=store_config,
        telegram=telegram_config,
        log=log_config,
        sync_interval=float(os.getenv("SYNC_INTERVAL", "60")),
        notification_interval=float(os.getenv("NOTIFICATION_INTERVAL", "30")),
    )
