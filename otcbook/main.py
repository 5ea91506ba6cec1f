"""主入口"""
import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler
import signal as sig
import sys

from .config import load_config, LogConfig
from .core.engine import Engine
from .execution.amounts import AmountError, parse_amount
from .models.order import TradeIntent

logger = logging.getLogger(__name__)


def setup_logging(log_config: LogConfig):
    """配置日志（带轮转功能）"""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_config.level))

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    file_handler = RotatingFileHandler(
        log_config.file,
        maxBytes=log_config.max_bytes,
        backupCount=log_config.backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(getattr(logging, log_config.level))
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def parse_args():
    """解析命令行参数"""
    parser = argparse.ArgumentParser(description="OTC order book sync engine")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="持续同步目录与通知（默认）")
    sub.add_parser("list", help="刷新一次并打印订单列表")

    execute = sub.add_parser("execute", help="对订单出价成交")
    execute.add_argument("order_id", type=int)
    execute.add_argument("token", help="买方代币地址")
    execute.add_argument("amount", help="出价数量（可读单位）")

    cancel = sub.add_parser("cancel", help="撤销自己的订单")
    cancel.add_argument("order_id", type=int)
    return parser.parse_args()


def _fmt_usd(value) -> str:
    return f"${value:,.2f}" if value is not None else "-"


def _fmt_pct(value) -> str:
    return f"{value:+.2f}%" if value is not None else "-"


async def list_orders(engine: Engine):
    await engine.refresh()
    for row in engine.view():
        sell = engine.directory.resolve(row.order.sell_token)
        print(
            f"#{row.order.order_id:<6} {sell.ticker:<8} {row.status.value:<10} "
            f"sell {_fmt_usd(row.valuation.sell_usd):>12}  "
            f"min buy {_fmt_usd(row.valuation.min_buy_usd):>12}  "
            f"vs market {_fmt_pct(row.discount.vs_market_pct):>9}  "
            f"vs backing {_fmt_pct(row.discount.vs_backing_pct):>9}"
        )


async def execute_order(engine: Engine, order_id: int, token: str, amount: str) -> int:
    await engine.refresh()
    try:
        raw = parse_amount(amount, engine.directory.resolve(token).decimals)
    except AmountError as e:
        logger.error(f"Invalid amount: {e}")
        return 1
    result = await engine.execute(TradeIntent(order_id=order_id, amounts={token: raw}))
    if not result.success:
        logger.error(f"Trade failed: {result.error} {result.detail}")
        return 1
    return 0


async def main():
    """主函数"""
    args = parse_args()
    config = load_config()
    setup_logging(config.log)

    engine = Engine(config)
    code = 0
    try:
        if args.command == "list":
            await list_orders(engine)
        elif args.command == "execute":
            code = await execute_order(engine, args.order_id, args.token, args.amount)
        elif args.command == "cancel":
            await engine.refresh()
            result = await engine.cancel(args.order_id)
            code = 0 if result.success else 1
        else:
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(sig.SIGINT, lambda: asyncio.create_task(engine.stop()))
            await engine.run()
    finally:
        await engine.stop()
    return code


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
