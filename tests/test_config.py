"""
Tests for configuration loading and logging setup
"""

import logging

import pytest
import yaml

from docqueue.config import QueueConfig, setup_logging
from docqueue.exceptions import ConfigurationError
from docqueue.jobs.dispatcher import ProcessorConfig
from docqueue.jobs.metrics import HealthThresholds


class TestQueueConfig:
    """Tests for QueueConfig"""

    def test_defaults(self):
        config = QueueConfig()
        assert config.get('redis.url') == 'redis://localhost:6379/0'
        assert config.get('processor.batch_size') == 5
        assert config.get('health.queue_critical') == 500
        assert config.get('no.such.key', 'fallback') == 'fallback'
        assert config.config_file is None

    def test_overrides_are_deep_merged(self):
        config = QueueConfig({'processor': {'batch_size': 2}})
        assert config.get('processor.batch_size') == 2
        assert config.get('processor.max_concurrent_jobs') == 10

    def test_config_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump({'redis': {'key_prefix': 'staging'}, 'processor': {'max_retries': 5}}))

        config = QueueConfig.from_file(path)

        assert config.get('redis.key_prefix') == 'staging'
        assert config.get('redis.url') == 'redis://localhost:6379/0'
        assert config.get('processor.max_retries') == 5

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            QueueConfig.from_file(tmp_path / 'absent.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('processor: [unclosed')
        with pytest.raises(ConfigurationError):
            QueueConfig.from_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('')
        with pytest.raises(ConfigurationError):
            QueueConfig.from_file(path)

    @pytest.mark.parametrize('overrides', [
        {'database': {'type': 'oracle'}},
        {'redis': {'url': ''}},
        {'logging': {'level': 'LOUD'}},
        {'health': None},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            QueueConfig(overrides)

    def test_set_and_section_copy(self):
        config = QueueConfig()
        config.set('processor.batch_size', 9)
        config.set('extra.nested.value', 1)

        section = config.get_section('processor')
        section['batch_size'] = 100

        assert config.get('processor.batch_size') == 9
        assert config.get('extra.nested.value') == 1

    def test_validate_reports_errors(self):
        config = QueueConfig()
        assert config.validate()
        config.set('database.type', 'mysql')
        assert not config.validate()

    def test_save_round_trip(self, tmp_path):
        config = QueueConfig({'processor': {'batch_size': 3}})
        target = config.save(tmp_path / 'saved.yaml')

        assert QueueConfig.from_file(target).get('processor.batch_size') == 3

    def test_sections_feed_processor_settings(self):
        config = QueueConfig({'processor': {'batch_size': 7}, 'health': {'queue_warning': 10}})

        processor = ProcessorConfig.from_dict(config.get_section('processor'))
        thresholds = HealthThresholds.from_dict(config.get_section('health'))

        assert processor.batch_size == 7
        assert thresholds.queue_warning == 10
        assert thresholds.queue_critical == 500


class TestSetupLogging:
    """Tests for setup_logging"""

    def test_level_and_handlers(self):
        config = QueueConfig({'logging': {'level': 'debug'}})
        logger = setup_logging(config)

        assert logger.name == 'docqueue'
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / 'logs' / 'docqueue.log'
        config = QueueConfig({'logging': {'level': 'INFO', 'file': str(log_file)}})

        logger = setup_logging(config)
        logging.getLogger('docqueue.jobs.dispatcher').info('dispatcher ready')
        for handler in logger.handlers:
            handler.flush()

        assert 'dispatcher ready' in log_file.read_text()
