"""
Tests for the command-line interface
"""

import asyncio
import json

import fakeredis
import fakeredis.aioredis
import pytest
import yaml
from click.testing import CliRunner

from docqueue.cli import cli
from docqueue.jobs.envelope import JobEnvelope
from docqueue.jobs.queue_store import RedisQueueStore
from docqueue.runtime import build_runtime


@pytest.fixture
def cli_server():
    return fakeredis.FakeServer()


def make_store(server):
    client = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    return RedisQueueStore(client, key_prefix='cli')


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'database': {'type': 'sqlite', 'path': str(tmp_path / 'docqueue.db')},
        'processor': {'sync_pending_on_start': False, 'retry_delay': 0.0},
        'providers': {
            'extraction': {'type': 'memory'},
            'storage_sync': {'type': 'memory'},
            'search': {'type': 'memory'},
        },
    }))
    return path


@pytest.fixture
def invoke(cli_server, config_path, monkeypatch):
    """Invoke the CLI against a fake Redis server and a temporary database"""
    monkeypatch.setattr(
        'docqueue.cli.build_runtime',
        lambda config: build_runtime(config, store=make_store(cli_server))
    )
    runner = CliRunner()

    def _invoke(*args, **kwargs):
        return runner.invoke(
            cli,
            ['--config', str(config_path), '--log-level', 'CRITICAL', *args],
            **kwargs
        )

    return _invoke


def queue_length(server, kind):
    async def length():
        store = make_store(server)
        try:
            return await store.queue_length(kind)
        finally:
            await store.close()

    return asyncio.run(length())


class TestCommands:
    """Tests for the docqueue commands"""

    def test_init_db(self, invoke, tmp_path):
        result = invoke('init-db')

        assert result.exit_code == 0
        assert 'Database tables created' in result.stdout
        assert (tmp_path / 'docqueue.db').exists()

    def test_enqueue_and_status(self, invoke, cli_server):
        result = invoke('enqueue', 'extraction', '--payload', '{"organization_id": 1, "file_id": 3}',
                        '--priority', '7')

        assert result.exit_code == 0
        assert result.stdout.startswith('Enqueued extraction job job_')
        assert queue_length(cli_server, 'extraction') == 1

        status = invoke('status')
        assert status.exit_code == 0
        data = json.loads(status.stdout)
        assert data['queues']['extraction']['length'] == 1
        assert data['running'] is False

    def test_enqueue_invalid_json(self, invoke):
        result = invoke('enqueue', 'extraction', '--payload', '{not json')
        assert result.exit_code != 0

    def test_enqueue_invalid_payload(self, invoke, cli_server):
        result = invoke('enqueue', 'search-indexing', '--payload', '{"organization_id": 1}')

        assert result.exit_code == 2
        assert queue_length(cli_server, 'search-indexing') == 0

    def test_enqueue_unknown_kind(self, invoke):
        result = invoke('enqueue', 'thumbnailing', '--payload', '{}')
        assert result.exit_code == 2

    def test_run_once(self, invoke, cli_server):
        invoke('enqueue', 'storage-sync', '--payload', '{"organization_id": 1, "sync_type": "full"}', '--persist')

        result = invoke('run', '--once')

        assert result.exit_code == 0
        assert 'Tick finished: fetched 1, succeeded 1, failed 0' in result.stdout
        assert queue_length(cli_server, 'storage-sync') == 0

        status = json.loads(invoke('status').stdout)
        assert status['records'] == {'storage-sync': {'completed': 1}}

    def test_health_exits_nonzero_when_not_running(self, invoke):
        result = invoke('health')

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data['status'] == 'unhealthy'
        assert 'Processor is not running' in data['issues']

    def test_clear_queue_requires_confirmation(self, invoke, cli_server):
        invoke('enqueue', 'extraction', '--payload', '{"organization_id": 1, "file_id": 3}')

        declined = invoke('clear-queue', 'extraction', input='n\n')
        assert queue_length(cli_server, 'extraction') == 1
        assert declined.exit_code == 0

        confirmed = invoke('clear-queue', 'extraction', '--yes')
        assert confirmed.exit_code == 0
        assert 'Queue extraction cleared' in confirmed.stdout
        assert queue_length(cli_server, 'extraction') == 0

    def test_list_and_retry_failed(self, invoke, cli_server):
        envelope = JobEnvelope.create('extraction', {'organization_id': 1, 'file_id': 3})

        async def dead_letter():
            store = make_store(cli_server)
            try:
                await store.record_dead_letter(envelope, 'gave up')
            finally:
                await store.close()

        asyncio.run(dead_letter())

        listed = invoke('list-failed', 'extraction')
        assert listed.exit_code == 0
        assert [entry['id'] for entry in json.loads(listed.stdout)] == [envelope.id]

        retried = invoke('retry-failed', 'extraction')
        assert retried.exit_code == 0
        assert 'Re-enqueued 1 failed extraction jobs' in retried.stdout
        assert queue_length(cli_server, 'extraction') == 1

    def test_sync_pending(self, invoke, cli_server):
        invoke('init-db')
        invoke('enqueue', 'extraction', '--payload', '{"organization_id": 1, "file_id": 3}', '--persist')
        invoke('clear-queue', 'extraction', '--yes')

        result = invoke('sync-pending')

        assert result.exit_code == 0
        assert 'Submitted 1 pending jobs' in result.stdout
        assert queue_length(cli_server, 'extraction') == 1

    def test_missing_config_file(self, tmp_path):
        result = CliRunner().invoke(cli, ['--config', str(tmp_path / 'absent.yaml'), 'status'])
        assert result.exit_code == 2
