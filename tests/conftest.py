import logging

import fakeredis
import fakeredis.aioredis
import pytest

from docqueue.config import queue_config
from docqueue.db.connection import Database
from docqueue.db.record import SystemOfRecord
from docqueue.jobs.queue_store import RedisQueueStore
from docqueue.providers.memory import (
    InMemoryExtractionProvider,
    InMemorySearchIndex,
    InMemoryStorageSyncProvider,
)
from docqueue.providers.factory import Providers


@pytest.fixture(autouse=True)
def no_user_config(tmp_path, monkeypatch):
    """Keep ~/.docqueue/config.yaml out of the tests"""
    monkeypatch.setattr(queue_config, 'USER_CONFIG_PATH', tmp_path / 'missing' / 'config.yaml')


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() so handlers never outlive a test"""
    yield
    logger = logging.getLogger('docqueue')
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def redis_server():
    """Shared fake Redis server; set `connected = False` to simulate an outage"""
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.aioredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisQueueStore(redis_client, key_prefix='test')


@pytest.fixture
def db(tmp_path):
    database = Database(url=f"sqlite:///{tmp_path / 'docqueue.db'}")
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def record(db):
    return SystemOfRecord(db)


@pytest.fixture
def providers():
    return Providers(
        extraction=InMemoryExtractionProvider(),
        storage_sync=InMemoryStorageSyncProvider(),
        search=InMemorySearchIndex(),
    )
