"""
Flask CLI commands for single-shot backups.

    flask --app pgbackup backup
    flask --app pgbackup backup-legacy
"""

import logging

import click
from flask import current_app

from pgbackup.scheduler import run_backup


logger = logging.getLogger(__name__)


def run_single_shot(app, legacy: bool = False) -> int:
    """
    Run one backup and map the outcome to a process exit status.

    Args:
        app: Flask app instance
        legacy: Run the legacy whole-cluster backup instead

    Returns:
        0 on success, 1 on failure
    """
    with app.app_context():
        try:
            run_backup(app.config, legacy=legacy)
        except Exception as e:
            logger.error(f"Error while running backup: {e}", exc_info=True)
            return 1

    logger.info("Database backup complete, exiting...")
    return 0


def register_commands(app):
    """Attach the backup commands to the app's CLI."""

    @app.cli.command('backup')
    def backup_command():
        """Back up every database on the cluster once."""
        status = run_single_shot(current_app._get_current_object())
        if status:
            raise click.exceptions.Exit(status)

    @app.cli.command('backup-legacy')
    def backup_legacy_command():
        """Back up BACKUP_DATABASE_URL as a single dump once."""
        status = run_single_shot(current_app._get_current_object(), legacy=True)
        if status:
            raise click.exceptions.Exit(status)
