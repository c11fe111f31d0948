"""
Unit tests for the Flask app, HTTP routes and CLI commands.
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner
from flask.cli import FlaskGroup

from pgbackup import create_app
from pgbackup.commands import run_single_shot
from pgbackup.backup.storage import UploadError


class TestAppFactory:
    """Test create_app."""

    def test_testing_config(self, app):
        """Test the testing config is loaded and the scheduler is skipped."""
        from pgbackup import scheduler as scheduler_module

        assert app.config['TESTING'] is True
        assert app.config['SCHEDULER_ENABLED'] is False
        assert scheduler_module.scheduler is None

    @patch('pgbackup.scheduler.start_scheduler')
    @patch('pgbackup.scheduler.init_scheduler')
    def test_scheduler_started_when_enabled(self, mock_init, mock_start, monkeypatch):
        """Test the scheduler starts when enabled."""
        from pgbackup.config import TestingConfig
        monkeypatch.setattr(TestingConfig, 'SCHEDULER_ENABLED', True)

        app = create_app('testing')

        mock_init.assert_called_once_with(app)
        mock_start.assert_called_once()

    @patch('pgbackup.scheduler.init_scheduler')
    def test_single_shot_mode_skips_scheduler(self, mock_init, monkeypatch):
        """Test single-shot mode never starts the scheduler."""
        from pgbackup.config import TestingConfig
        monkeypatch.setattr(TestingConfig, 'SCHEDULER_ENABLED', True)
        monkeypatch.setattr(TestingConfig, 'SINGLE_SHOT_MODE', True)

        create_app('testing')

        mock_init.assert_not_called()

    def test_invalid_config_fails_fast(self, monkeypatch):
        """Test a scheduled app refuses to start without a bucket."""
        from pgbackup.config import TestingConfig, ConfigError
        monkeypatch.setattr(TestingConfig, 'SCHEDULER_ENABLED', True)
        monkeypatch.setattr(TestingConfig, 'AWS_S3_BUCKET', None)

        with pytest.raises(ConfigError, match='AWS_S3_BUCKET'):
            create_app('testing')


class TestRoutes:
    """Test HTTP endpoints."""

    def test_health(self, client):
        """Test health check."""
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}

    def test_status(self, client):
        """Test status reports scheduler state and last run."""
        response = client.get('/api/status')

        assert response.status_code == 200
        data = response.get_json()
        assert data['initialized'] is False
        assert data['last_run'] is None

    def test_run_backup_without_scheduler(self, client):
        """Test manual trigger is refused when the scheduler is not running."""
        response = client.post('/api/backup/run')

        assert response.status_code == 503
        assert response.get_json() == {'error': 'Scheduler is not running'}

    @patch('pgbackup.routes.status_routes.trigger_backup_now')
    @patch('pgbackup.routes.status_routes.is_scheduler_running', return_value=True)
    def test_run_backup_queued(self, mock_running, mock_trigger, client):
        """Test manual trigger queues a run."""
        response = client.post('/api/backup/run')

        assert response.status_code == 202
        assert response.get_json() == {'status': 'queued'}
        mock_trigger.assert_called_once()


class TestCommands:
    """Test single-shot CLI commands."""

    @patch('pgbackup.commands.run_backup')
    def test_backup_command_success(self, mock_run_backup, runner, app):
        """Test a successful run exits 0."""
        result = runner.invoke(args=['backup'])

        assert result.exit_code == 0
        mock_run_backup.assert_called_once_with(app.config, legacy=False)

    @patch('pgbackup.commands.run_backup')
    def test_backup_command_failure(self, mock_run_backup, runner):
        """Test a failing run exits 1."""
        mock_run_backup.side_effect = UploadError('S3 upload failed (AccessDenied)')

        result = runner.invoke(args=['backup'])

        assert result.exit_code == 1

    @patch('pgbackup.commands.run_backup')
    def test_backup_legacy_command(self, mock_run_backup, runner, app):
        """Test the legacy command runs the single-dump path."""
        result = runner.invoke(args=['backup-legacy'])

        assert result.exit_code == 0
        mock_run_backup.assert_called_once_with(app.config, legacy=True)

    @pytest.mark.parametrize('command', ['backup', 'backup-legacy'])
    @patch('pgbackup.scheduler.BackgroundScheduler')
    @patch('pgbackup.commands.run_backup')
    def test_cli_command_does_not_start_scheduler(self, mock_run_backup, mock_scheduler_class, command, monkeypatch):
        """Test loading the app for a CLI backup leaves the scheduler off."""
        from pgbackup import scheduler as scheduler_module
        from pgbackup.config import TestingConfig
        monkeypatch.setattr(TestingConfig, 'SCHEDULER_ENABLED', True)
        monkeypatch.setattr(TestingConfig, 'RUN_ON_STARTUP', True)

        cli = FlaskGroup(create_app=lambda: create_app('testing'), load_dotenv=False)
        result = CliRunner().invoke(cli, [command])

        assert result.exit_code == 0, result.output
        mock_run_backup.assert_called_once()
        mock_scheduler_class.assert_not_called()
        assert scheduler_module.scheduler is None

    @patch('pgbackup.commands.run_backup')
    def test_run_single_shot_status(self, mock_run_backup, app):
        """Test exit status mapping."""
        assert run_single_shot(app) == 0

        mock_run_backup.side_effect = RuntimeError('boom')
        assert run_single_shot(app) == 1
