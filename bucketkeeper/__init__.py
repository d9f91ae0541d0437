import os
import logging
from logging.handlers import RotatingFileHandler

import click
from flask import Flask, current_app


NOISY_LOGGERS = ('boto3', 'botocore', 'urllib3', 's3transfer', 'google.auth', 'apscheduler')


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'bucketkeeper.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # SDK debug output drowns the purge audit lines
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def init_services(app, dispatcher=None, directory=None):
    """
    Attach the connector dispatcher and cluster directory to the app.

    Args:
        app: Flask app instance
        dispatcher: Prebuilt ConnectorDispatcher (default: every known connector)
        directory: Prebuilt ClusterDirectory (default: read CLUSTER_CONFIG_PATH)
    """
    from bucketkeeper.directory import ClusterDirectory
    from bucketkeeper.storage import ConnectorDispatcher, default_registry

    if dispatcher is None:
        dispatcher = ConnectorDispatcher(default_registry(
            delete_concurrency=app.config['DELETE_CONCURRENCY'],
            copy_concurrency=app.config['COPY_CONCURRENCY'],
        ))
    if directory is None:
        directory = ClusterDirectory(config_path=app.config['CLUSTER_CONFIG_PATH'])

    app.extensions['bucketkeeper'] = {
        'dispatcher': dispatcher,
        'directory': directory,
    }


def get_dispatcher(app=None):
    return (app or current_app).extensions['bucketkeeper']['dispatcher']


def get_directory(app=None):
    return (app or current_app).extensions['bucketkeeper']['directory']


def create_purge_engine(app=None, dry_run=None):
    """
    Build a PurgeEngine from app configuration.

    Args:
        app: Flask app instance (default: current_app)
        dry_run: Overrides PURGE_DRY_RUN when given
    """
    from bucketkeeper.backup.purge import PurgeEngine

    app = app or current_app
    return PurgeEngine(
        get_dispatcher(app),
        get_directory(app),
        quantity=app.config['PURGE_RETENTION_QUANTITY'],
        dry_run=app.config['PURGE_DRY_RUN'] if dry_run is None else dry_run,
        concurrency=app.config['PURGE_CONCURRENCY'],
    )


def register_commands(app):
    """Register `flask purge` and `flask restore`."""
    from bucketkeeper.backup.transfer import restore_backup
    from bucketkeeper.errors import StorageError
    from bucketkeeper.scheduler import run_purge

    @app.cli.command('purge')
    @click.option('--live', is_flag=True, help='Delete for real, overriding PURGE_DRY_RUN.')
    @click.option('--dry-run', 'force_dry_run', is_flag=True, help='Only report, overriding PURGE_DRY_RUN.')
    def purge_command(live, force_dry_run):
        """Delete all but the newest backups of every installation."""
        if live and force_dry_run:
            raise click.UsageError('--live and --dry-run are mutually exclusive')
        dry_run = False if live else (True if force_dry_run else None)
        summary = run_purge(app, dry_run=dry_run)
        click.echo(
            f"Purge finished (dry_run={summary['dry_run']}): "
            f"{summary['installations_processed']} installations, "
            f"{summary['backups_planned']} planned, {summary['backups_deleted']} deleted, "
            f"{len(summary['errors'])} errors"
        )
        for error in summary['errors']:
            click.echo(f"  {error}", err=True)

    @app.cli.command('restore')
    @click.argument('source_installation')
    @click.argument('backup_name')
    @click.option('--filesource', 'source_filesource', required=True,
                  help='Filesource holding the backup.')
    @click.option('--destination', default=None,
                  help='Installation to restore into. Defaults to the source installation.')
    def restore_command(source_installation, backup_name, source_filesource, destination):
        """Copy the files recorded in a backup into an installation."""
        directory = get_directory(app)
        destination = destination or source_installation
        try:
            source = directory.resolve_filesource(source_filesource, source_installation)
            target = directory.resolve_filesource(
                directory.installation_filesource(destination), destination
            )
            result = restore_backup(
                get_dispatcher(app), source_installation, source, destination, target, backup_name
            )
        except StorageError as e:
            raise click.ClickException(str(e))
        click.echo(
            f"Restored {result.copied_count} files from {source_installation}/{backup_name} "
            f"to {destination} ({result.skipped_count} non-current versions skipped)"
        )


def create_app(config_name=None, dispatcher=None, directory=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from bucketkeeper.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    init_services(app, dispatcher=dispatcher, directory=directory)

    from bucketkeeper.routes import backups_routes, purge_routes
    app.register_blueprint(backups_routes.bp)
    app.register_blueprint(purge_routes.bp)

    register_commands(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Under Gunicorn only the designated worker runs the scheduler
    # (see docker/gunicorn_conf.py); a single process always owns it.
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    if not app.config.get('SCHEDULER_ENABLED', False):
        app.logger.info("Scheduler disabled (SCHEDULER_ENABLED is false)")
    elif not is_scheduler_worker:
        app.logger.info(f"Skipping scheduler in this worker (PID: {os.getpid()})")
    else:
        from bucketkeeper.scheduler import init_scheduler, start_scheduler, stop_scheduler
        import atexit

        app.logger.info(f"Initializing scheduler in this process (PID: {os.getpid()})...")
        init_scheduler(app)
        start_scheduler()
        atexit.register(stop_scheduler)

    return app
