"""Process-wide dependency set, constructed once at startup."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from wagerbot.config import Settings
from wagerbot.reconciler import BetReconciler
from wagerbot.services.ledger import LedgerClient, LedgerConfig, LedgerError
from wagerbot.services.telegram import TelegramConfig as NotifierConfig
from wagerbot.services.telegram import NotifierError, TelegramNotifier, create_notifier
from wagerbot.storage import (
    COUNTERS,
    RESOLUTIONS,
    SETTLEMENTS,
    WALLETS,
    ResolutionJournal,
    SequenceCounter,
    SettlementJournal,
    WalletStore,
    check_connection,
    create_client,
)

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Missing credentials or unreachable persistence. Fatal at startup."""

    pass


class Runtime(BaseModel):
    """Dependencies shared by the reconciler and the CLI commands."""

    model_config = {"arbitrary_types_allowed": True}

    settings: Settings
    database: AsyncIOMotorDatabase
    wallets: WalletStore
    journal: SettlementJournal
    resolutions: ResolutionJournal
    counter: SequenceCounter
    ledger: LedgerClient
    notifier: TelegramNotifier | None = None
    reconciler: BetReconciler


def ledger_config_from(settings: Settings) -> LedgerConfig:
    return LedgerConfig(
        rpc_url=settings.rpc_url,
        contract_address=settings.contract_address,
        nft_contract_address=settings.nft_contract_address,
        **settings.ledger.model_dump(),
    )


@asynccontextmanager
async def open_runtime(
    settings: Settings,
    with_notifier: bool = True,
) -> AsyncIterator[Runtime]:
    """Connect to MongoDB, the ledger and Telegram; close them on exit."""
    with_notifier = with_notifier and settings.telegram.send_settlement_alerts
    missing = settings.missing_credentials(require_telegram=with_notifier)
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    client = create_client(settings.mongodb_uri)
    try:
        database = client[settings.mongodb_database]
        if not await check_connection(database):
            raise ConfigurationError("MongoDB is unreachable")

        wallets = WalletStore(database[WALLETS])
        journal = SettlementJournal(database[SETTLEMENTS])
        resolutions = ResolutionJournal(database[RESOLUTIONS])
        counter = SequenceCounter(database[COUNTERS])
        await wallets.ensure_indexes()
        await journal.ensure_indexes()
        await resolutions.ensure_indexes()
        await counter.load()

        async with AsyncExitStack() as stack:
            try:
                ledger = await stack.enter_async_context(
                    LedgerClient(
                        config=ledger_config_from(settings),
                        operator_private_key=settings.operator_private_key,
                    )
                )

                notifier = None
                if with_notifier:
                    notifier = await stack.enter_async_context(
                        create_notifier(
                            bot_token=settings.telegram_bot_token,
                            config=NotifierConfig(parse_mode=settings.telegram.parse_mode),
                        )
                    )
                else:
                    logger.info("Telegram notifications disabled")
            except (LedgerError, NotifierError, ValueError) as e:
                raise ConfigurationError(f"Startup failed: {e}") from e

            reconciler = BetReconciler(
                ledger=ledger,
                wallets=wallets,
                journal=journal,
                resolutions=resolutions,
                counter=counter,
                notifier=notifier,
                config=settings.reconciler,
            )

            yield Runtime(
                settings=settings,
                database=database,
                wallets=wallets,
                journal=journal,
                resolutions=resolutions,
                counter=counter,
                ledger=ledger,
                notifier=notifier,
                reconciler=reconciler,
            )
    finally:
        client.close()
