import os
import logging
from logging.handlers import RotatingFileHandler

import click
from flask import Flask


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
        os.path.join(log_dir, 'pgbackup.log'),
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

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def _loaded_for_cli_command():
    """True while the flask CLI loads the app for a command other than `run`."""
    ctx = click.get_current_context(silent=True)
    return ctx is not None and ctx.info_name != 'run'


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from pgbackup.config import config, validate_config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Register blueprints and CLI commands
    from pgbackup.routes import status_routes
    from pgbackup.commands import register_commands
    app.register_blueprint(status_routes.bp)
    register_commands(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    from pgbackup.scheduler import init_scheduler, start_scheduler, stop_scheduler
    import atexit

    # Single-shot runs and CLI commands never start the scheduler
    should_init_scheduler = (
        app.config.get('SCHEDULER_ENABLED', True)
        and not app.config.get('SINGLE_SHOT_MODE', False)
        and not _loaded_for_cli_command()
    )

    if should_init_scheduler:
        # Fail fast on a broken environment instead of at the first cron tick
        validate_config(app.config)

        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
