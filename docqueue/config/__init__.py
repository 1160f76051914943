from docqueue.config.queue_config import QueueConfig, setup_logging

__all__ = ['QueueConfig', 'setup_logging']
