import os
import tempfile


def _env_flag(name, default):
    """Read a boolean from the environment. Only 'true'/'false' (any case) are recognised."""
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip().lower()
    if value == 'false':
        return False
    if value == 'true':
        return True
    return default


class Config:
    """Base configuration"""

    # Purge
    # Anything other than an explicit 'false' keeps the purge in dry-run mode
    PURGE_DRY_RUN = _env_flag('PURGE_DRY_RUN', True)
    PURGE_RETENTION_QUANTITY = int(os.environ.get('PURGE_RETENTION_QUANTITY', 30))
    PURGE_CONCURRENCY = int(os.environ.get('PURGE_CONCURRENCY', 10))

    # Batch operations
    DELETE_CONCURRENCY = int(os.environ.get('DELETE_CONCURRENCY', 100))
    COPY_CONCURRENCY = int(os.environ.get('COPY_CONCURRENCY', 25))

    # Cluster directory
    CLUSTER_CONFIG_PATH = os.environ.get('CLUSTER_CONFIG_PATH') or '/data/cluster.json'

    # Scheduler
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', True)
    SCHEDULER_TIMEZONE = 'UTC'
    PURGE_SCHEDULE_CRON = os.environ.get('PURGE_SCHEDULE_CRON') or '0 2 * * *'

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    CLUSTER_CONFIG_PATH = os.environ.get('CLUSTER_CONFIG_PATH') or os.path.join(DATA_DIR, 'cluster.json')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', False)


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(DevelopmentConfig):
    """Test configuration"""
    TESTING = True
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'bucketkeeper-test-logs')
    PURGE_DRY_RUN = True
    SCHEDULER_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
