import argparse
import asyncio
import logging
import signal
import sys

from typing import Any, Dict, List, Optional

from .configuration import Configuration
from .constants import ERROR_CONFIGURATION_LOAD, get_error_message
from .core import Main_Core
from .exceptions import StopRequestedError
from .logger import configure_logging, get_logger

logger = get_logger("preconf_bidder.main")

# Flag destination -> Configuration attribute
_OVERRIDES = {
    "server_address": "SERVER_ADDRESS",
    "use_payload": "USE_PAYLOAD",
    "rpc_endpoint": "RPC_ENDPOINT",
    "ws_endpoint": "WS_ENDPOINT",
    "private_key": "PRIVATE_KEY",
    "offset": "OFFSET",
    "bid_amount": "BID_AMOUNT",
    "bid_amount_std_dev_percentage": "BID_AMOUNT_STD_DEV_PERCENTAGE",
    "priority_fee": "PRIORITY_FEE",
    "num_blob": "NUM_BLOB",
    "default_timeout": "DEFAULT_TIMEOUT",
    "run_duration_minutes": "RUN_DURATION_MINUTES",
    "decay_duration_ms": "DECAY_DURATION_MS",
    "app_name": "APP_NAME",
    "app_version": "VERSION",
    "log_level": "LOG_LEVEL",
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Command line flags. Anything left unset falls back to the environment."""
    parser = argparse.ArgumentParser(
        prog="preconf_bidder",
        description="Bids for preconfirmation of a fresh transaction on every new block.",
    )
    parser.add_argument("--env", help="Path to a .env file (default: ENV_FILE or ./.env)")
    parser.add_argument("--server-address", help="Bidder service address, host:port")
    parser.add_argument(
        "--use-payload",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Send raw transactions in the bid instead of relaying and bidding by hash",
    )
    parser.add_argument("--rpc-endpoint", help="HTTP RPC endpoint, also used as the bundle relay")
    parser.add_argument("--ws-endpoint", help="WebSocket endpoint for new block headers")
    parser.add_argument("--private-key", help="Hex encoded signing key")
    parser.add_argument("--offset", type=int, help="Target block offset from the latest block")
    parser.add_argument("--bid-amount", type=float, help="Target bid in ETH")
    parser.add_argument(
        "--bid-amount-std-dev-percentage",
        type=float,
        help="Standard deviation of the bid as a percentage of the target",
    )
    parser.add_argument("--priority-fee", type=int, help="Priority fee in wei")
    parser.add_argument("--num-blob", type=int, help="Blobs per transaction, 0 sends a self transfer")
    parser.add_argument("--default-timeout", type=float, help="Timeout for chain reads and relay calls, seconds")
    parser.add_argument("--run-duration-minutes", type=int, help="Stop after this many minutes, 0 runs forever")
    parser.add_argument("--decay-duration-ms", type=int, help="Length of the bid decay window in milliseconds")
    parser.add_argument("--app-name", help="Application name shown in logs")
    parser.add_argument("--app-version", help="Application version shown in logs")
    parser.add_argument("--log-level", help="Logging level, e.g. DEBUG or INFO")
    return parser.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    return {attribute: getattr(args, dest) for dest, attribute in _OVERRIDES.items()}


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with graceful shutdown handling."""
    configure_logging()
    args = parse_args(argv)
    try:
        configuration = Configuration.load(args.env, overrides_from_args(args))
    except Exception as e:
        logger.critical(f"{get_error_message(ERROR_CONFIGURATION_LOAD)} {e}")
        return 1

    configure_logging(
        getattr(logging, configuration.LOG_LEVEL, logging.INFO),
        configuration.APP_NAME,
        configuration.VERSION,
    )
    core = Main_Core(configuration)

    def shutdown_handler():
        logger.info("Shutdown signal received")
        core.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    try:
        await core.initialize()
        await core.run()
        return 0
    except StopRequestedError:
        logger.info("Stopped before bidding started")
        return 0
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        return 1
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass
        await core.stop()
        logger.info(f"{configuration.APP_NAME} shutdown complete")


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
