"""Wagerbot CLI entry point."""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from wagerbot import __version__
from wagerbot.betting import (
    BettingError,
    connect_wallet,
    create_bet,
    list_active_bets,
    list_user_bets,
    place_bet,
)
from wagerbot.config import YAML_SECTIONS, get_settings
from wagerbot.reconciler.messages import format_eth
from wagerbot.runtime import ConfigurationError, Runtime, open_runtime
from wagerbot.scheduler import run_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# Wagerbot Configuration
# Operational parameters only. Secrets (Mongo URI, RPC URL, operator key,
# Telegram token) belong in the .env file, not here.

reconciler:
  interval_seconds: 60
  max_parallel_settlements: 4
  max_notify_attempts: 3
  resume_unfinished: true

ledger:
  request_timeout_seconds: 30
  receipt_timeout_seconds: 120
  max_retries: 3
  create_bet_gas: 500000
  resolve_gas: 5000000
  place_bet_gas: 5000000
  claim_gas: 5000000
  mint_gas: 5000000

betting:
  supported_tokens: [ETH, BTC, LINK]
  min_stake_eth: 0.001
  bet_duration_minutes: 5

telegram:
  send_settlement_alerts: true
"""


def _init_logfire() -> None:
    # Tracing is optional for every command
    from wagerbot.observability import initialize_logfire

    initialize_logfire(get_settings())


def _run(fn, with_notifier: bool = False):
    """Open the runtime, run ``fn(runtime)`` and close everything again."""

    async def runner():
        async with open_runtime(get_settings(), with_notifier=with_notifier) as runtime:
            return await fn(runtime)

    return asyncio.run(runner())


def _format_price(value: int, decimals: int) -> str:
    return f"{(Decimal(value) / Decimal(10) ** decimals).normalize():f}"


def _flag(value: str) -> str:
    return "✓ Set" if value else "✗ Not set"


def cmd_init(args: argparse.Namespace) -> int:
    """Create the data directory and a config.yaml template."""
    try:
        settings = get_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)

        if settings.config_path.exists():
            print(f"\n✓ Keeping existing {settings.config_path}")
        else:
            settings.config_path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
            print(f"\n✓ Wrote config template to {settings.config_path}")

        print("\nBefore starting the reconciler:")
        print("1. Copy .env.example to .env and fill in the credentials")
        print("2. Check the values with 'python -m wagerbot config'")
        print("3. Start it with 'python -m wagerbot run'\n")
        return 0

    except OSError as e:
        logger.error(f"Could not create {e.filename}: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Print the merged configuration and which credentials are present."""
    try:
        settings = get_settings()
    except (ValidationError, ValueError) as e:
        print(f"\n❌ Invalid configuration:\n{e}\n")
        return 1

    print("\n=== Wagerbot Configuration ===\n")
    print(f"Data Directory: {settings.data_dir}")
    print(f"MongoDB Database: {settings.mongodb_database}\n")

    for section in YAML_SECTIONS:
        print(f"{section}:")
        for key, value in getattr(settings, section).model_dump().items():
            print(f"  {key}: {value}")
        print()

    print("Credentials:")
    print(f"  MONGODB_URI: {_flag(settings.mongodb_uri)}")
    print(f"  RPC_URL: {_flag(settings.rpc_url)}")
    print(f"  CONTRACT_ADDRESS: {settings.contract_address or '✗ Not set'}")
    print(f"  NFT_CONTRACT_ADDRESS: {settings.nft_contract_address or '✗ Not set'}")
    print(f"  OPERATOR_PRIVATE_KEY: {_flag(settings.operator_private_key)}")
    print(f"  TELEGRAM_BOT_TOKEN: {_flag(settings.telegram_bot_token)}")
    print(f"  LOGFIRE_TOKEN: {_flag(settings.logfire_token)}\n")

    missing = settings.missing_credentials(
        require_telegram=settings.telegram.send_settlement_alerts
    )
    if missing:
        print(f"⚠️ Reconciler cannot start until these are set: {', '.join(missing)}\n")
        return 1
    return 0


def cmd_wallet(args: argparse.Namespace) -> int:
    """Get or create a user's custodial wallet."""

    async def run(runtime: Runtime):
        return await connect_wallet(runtime.wallets, runtime.ledger, args.user_id)

    try:
        view = _run(run)
    except ConfigurationError as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Wallet lookup failed: {e}", exc_info=True)
        print(f"\n❌ Wallet lookup failed: {e}\n")
        return 1

    if view.created:
        print("\n🎉 New wallet generated!\n")
        print(f"Address: {view.wallet.address}\n")
        print("To start betting:")
        print("1. Send ETH to this address")
        print("2. Wait for confirmation")
        print("3. Start placing bets!\n")
    else:
        print("\nWallet already connected.\n")
        print(f"Address: {view.wallet.address}")
        print(f"Current balance: {format_eth(view.balance_wei)} ETH\n")
    return 0


def cmd_create_bet(args: argparse.Namespace) -> int:
    """Create a bet on a token with the operator key."""
    settings = get_settings()

    async def run(runtime: Runtime):
        return await create_bet(
            runtime.ledger, args.token, settings.betting.supported_tokens
        )

    try:
        bet_id = _run(run)
    except (BettingError, ConfigurationError) as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Create bet failed: {e}", exc_info=True)
        print(f"\n❌ Sorry, there was an error creating the bet: {e}\n")
        return 1

    print(f"\n✅ Bet created successfully for {args.token.upper()}!\n")
    print(f"Bet ID: {bet_id}")
    print(
        f"Place a stake with: python -m wagerbot place-bet --user-id <id> "
        f"--bet-id {bet_id} --direction higher --amount 0.1"
    )
    print(f"⏱️ Bet duration: {settings.betting.bet_duration_minutes} minutes")
    print(f"💰 Minimum bet: {settings.betting.min_stake_eth} ETH\n")
    return 0


def cmd_place_bet(args: argparse.Namespace) -> int:
    """Stake ETH from a user's custodial wallet."""

    async def run(runtime: Runtime):
        return await place_bet(
            runtime.ledger,
            runtime.wallets,
            args.user_id,
            args.bet_id,
            args.direction,
            args.amount,
        )

    try:
        receipt = _run(run)
    except (BettingError, ConfigurationError) as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Place bet failed: {e}", exc_info=True)
        print(
            "\n❌ Sorry, there was an error placing your bet. "
            "Please make sure you have enough ETH and the bet is still active.\n"
        )
        return 1

    if receipt.succeeded:
        print(f"\n✅ Bet placed successfully! Transaction hash: {receipt.tx_hash}\n")
        return 0
    print(f"\n❌ Transaction {receipt.tx_hash} failed. Please try again.\n")
    return 1


def cmd_bets(args: argparse.Namespace) -> int:
    """List active bets, or a user's stakes in active bets."""

    async def run(runtime: Runtime):
        if args.user_id:
            wallet = await runtime.wallets.find(args.user_id)
            if wallet is None:
                raise BettingError("Please connect a wallet first (python -m wagerbot wallet).")
            return await list_user_bets(runtime.ledger, wallet.address)
        return await list_active_bets(runtime.ledger)

    try:
        rows = _run(run)
    except (BettingError, ConfigurationError) as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Fetching bets failed: {e}", exc_info=True)
        print(f"\n❌ Sorry, there was an error fetching the bets: {e}\n")
        return 1

    if not rows:
        print("\nNo active bets at the moment.\n" if not args.user_id else "\nYou have no active bets.\n")
        return 0

    if args.user_id:
        print("\n🎯 Your Active Bets:\n")
        for row in rows:
            print(f"ID: {row.bet.id}")
            print(f"Token: {row.token.symbol}")
            print(f"Amount: {format_eth(row.stake.amount)} ETH")
            print(f"Direction: {row.stake.direction.name}\n")
    else:
        print("\n📊 Active Bets:\n")
        for row in rows:
            print(f"ID: {row.bet.id}")
            print(f"Token: {row.token.symbol}")
            print(f"Start Price: {_format_price(row.bet.start_price, row.token.decimals)}")
            print(f"Time Left: {row.seconds_left // 60}m {row.seconds_left % 60}s")
            print(f"Total Pool Higher: {format_eth(row.bet.total_pool_higher)} ETH")
            print(f"Total Pool Lower: {format_eth(row.bet.total_pool_lower)} ETH\n")
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Run a single reconciliation tick."""
    _init_logfire()

    async def run(runtime: Runtime):
        return await runtime.reconciler.run_tick()

    try:
        print("\n=== Bet Reconciler ===\n")
        result = _run(run, with_notifier=True)
    except ConfigurationError as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        print(f"\n❌ Reconciliation failed: {e}\n")
        return 1

    print("✓ Reconciliation complete\n")
    print(f"Bets Scanned: {result.bets_scanned}")
    print(f"Bets Resolved: {result.bets_resolved}")
    print(f"Resolve Failures: {result.resolve_failures}")
    print(f"Resolves Awaiting Confirmation: {result.resolves_pending}")
    print(f"Participants Settled: {result.participants_settled}")
    print(f"Settlement Failures: {result.settlement_failures}")
    print(f"Settlements Pending: {result.settlements_pending}")
    print(f"Losers Notified: {result.participants_lost}")
    print(f"Foreign Participants Skipped: {result.foreign_skipped}")
    print(f"Resumed From Journal: {result.resumed}\n")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Start the scheduled reconciler service."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()

        print("\n=== Wagerbot Reconciler Service ===\n")
        print(f"Version: {__version__}")
        print(f"Interval: {settings.reconciler.interval_seconds}s")
        print(f"Data Directory: {settings.data_dir}\n")

        asyncio.run(run_service(settings))
        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except ConfigurationError as e:
        logger.error(f"Startup aborted: {e}")
        print(f"\nFailed to start: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to start system: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Wagerbot: custodial betting bot for an on-chain price prediction market",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Wagerbot {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration file",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_wallet = subparsers.add_parser(
        "wallet",
        help="Get or create a user's custodial wallet",
    )
    parser_wallet.add_argument("--user-id", required=True, help="Chat user id")
    parser_wallet.set_defaults(func=cmd_wallet)

    parser_create = subparsers.add_parser(
        "create-bet",
        help="Create a new bet on a token (operator key)",
    )
    parser_create.add_argument("--token", required=True, help="Token symbol, e.g. ETH")
    parser_create.set_defaults(func=cmd_create_bet)

    parser_place = subparsers.add_parser(
        "place-bet",
        help="Place a stake from a user's custodial wallet",
    )
    parser_place.add_argument("--user-id", required=True, help="Chat user id")
    parser_place.add_argument("--bet-id", required=True, type=int, help="Bet id")
    parser_place.add_argument(
        "--direction",
        required=True,
        choices=["higher", "lower"],
        help="Predicted price direction",
    )
    parser_place.add_argument("--amount", required=True, help="Stake in ETH, e.g. 0.1")
    parser_place.set_defaults(func=cmd_place_bet)

    parser_bets = subparsers.add_parser(
        "bets",
        help="List active bets, or a user's active stakes with --user-id",
    )
    parser_bets.add_argument("--user-id", help="Show this user's stakes only")
    parser_bets.set_defaults(func=cmd_bets)

    parser_reconcile = subparsers.add_parser(
        "reconcile",
        help="Run a single reconciliation tick",
    )
    parser_reconcile.set_defaults(func=cmd_reconcile)

    parser_run = subparsers.add_parser(
        "run",
        help="Start the scheduled reconciler service",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.set_defaults(func=cmd_run)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
