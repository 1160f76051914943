"""
Runtime composition

Builds one dispatcher and its collaborators from configuration.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from docqueue.config import QueueConfig
from docqueue.db.connection import Database
from docqueue.db.record import SystemOfRecord
from docqueue.handlers import build_handler_table
from docqueue.jobs.dispatcher import BatchDispatcher, ProcessorConfig
from docqueue.jobs.metrics import HealthThresholds
from docqueue.jobs.queue_store import RedisQueueStore
from docqueue.providers.factory import ProviderFactory, Providers

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything one processing process needs"""
    config: QueueConfig
    db: Database
    record: SystemOfRecord
    store: RedisQueueStore
    providers: Providers
    dispatcher: BatchDispatcher

    async def close(self) -> None:
        """Stop the dispatcher and release connections"""
        await self.dispatcher.stop()
        await self.providers.close()
        await self.store.close()
        self.db.close()


def build_runtime(
    config: Optional[QueueConfig] = None,
    store: Optional[RedisQueueStore] = None,
    providers: Optional[Providers] = None,
    db: Optional[Database] = None
) -> Runtime:
    """
    Build a runtime from configuration

    Args:
        config: Loaded configuration, defaults when None
        store: Queue store to use instead of one built from `redis`
        providers: Providers to use instead of ones built from `providers`
        db: Database to use instead of one built from `database`

    Returns:
        Runtime with a stopped dispatcher
    """
    config = config or QueueConfig()

    if db is None:
        db = Database(config)
        db.create_tables()
    record = SystemOfRecord(db)

    if store is None:
        redis_config = config.get_section('redis')
        store = RedisQueueStore.from_url(
            redis_config['url'],
            key_prefix=redis_config.get('key_prefix', 'docqueue'),
            dedupe_ttl=int(redis_config.get('dedupe_ttl', 86400)),
            socket_timeout=redis_config.get('socket_timeout')
        )

    if providers is None:
        providers = ProviderFactory.build_providers(config.get_section('providers'))

    processor_config = ProcessorConfig.from_dict(config.get_section('processor'))
    handlers = build_handler_table(
        providers,
        record,
        indexing_priority_offset=processor_config.indexing_priority_offset
    )

    dispatcher = BatchDispatcher(
        store,
        handlers,
        record=record,
        config=processor_config,
        thresholds=HealthThresholds.from_dict(config.get_section('health'))
    )
    logger.debug("Runtime built")
    return Runtime(
        config=config,
        db=db,
        record=record,
        store=store,
        providers=providers,
        dispatcher=dispatcher
    )
