"""
Unit tests for scheduler (dbdump/scheduler.py).

Tests APScheduler configuration and scheduled run error handling.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest

from dbdump import scheduler as scheduler_module
from dbdump.config import ConfigError
from dbdump.backup.executor import LockError


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def teardown_method(self):
        """Reset global scheduler."""
        scheduler_module.scheduler = None

    @patch('dbdump.scheduler.BlockingScheduler')
    def test_init_scheduler(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler('30 2 * * *', config_path='/etc/dbdump.ini', force=True)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler

        call_kwargs = mock_scheduler_class.call_args[1]
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['job_defaults']['coalesce'] is True

        job_kwargs = mock_scheduler.add_job.call_args[1]
        assert job_kwargs['func'] is scheduler_module.run_scheduled_backup
        assert job_kwargs['id'] == scheduler_module.JOB_ID
        assert job_kwargs['kwargs'] == {'config_path': '/etc/dbdump.ini', 'force': True}
        trigger = job_kwargs['trigger']
        assert str(trigger.fields[trigger.FIELD_NAMES.index('hour')]) == '2'
        assert str(trigger.fields[trigger.FIELD_NAMES.index('minute')]) == '30'

    @patch('dbdump.scheduler.BlockingScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class):
        result1 = scheduler_module.init_scheduler('0 3 * * *')
        result2 = scheduler_module.init_scheduler('0 4 * * *')

        assert result1 is result2
        mock_scheduler_class.assert_called_once()

    def test_invalid_schedule(self):
        with pytest.raises(ConfigError, match='Invalid schedule'):
            scheduler_module.init_scheduler('every night')

        assert scheduler_module.scheduler is None

    def test_start_without_init(self):
        with pytest.raises(RuntimeError):
            scheduler_module.start_scheduler()

    @patch('dbdump.scheduler.BlockingScheduler')
    def test_start_and_stop(self, mock_scheduler_class):
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler_class.return_value = mock_scheduler
        scheduler_module.init_scheduler('0 3 * * *')

        scheduler_module.start_scheduler()
        scheduler_module.stop_scheduler()

        mock_scheduler.start.assert_called_once()
        mock_scheduler.shutdown.assert_called_once_with(wait=False)
        assert scheduler_module.scheduler is None


class TestRunScheduledBackup:
    """Test a single scheduled run."""

    @patch('dbdump.scheduler.execute_backup')
    @patch('dbdump.scheduler.load_config')
    def test_reloads_config_each_run(self, mock_load_config, mock_execute):
        scheduler_module.run_scheduled_backup('/etc/dbdump.ini', force=None)
        scheduler_module.run_scheduled_backup('/etc/dbdump.ini', force=None)

        assert mock_load_config.call_count == 2
        mock_execute.assert_called_with(mock_load_config.return_value, force=None)

    @patch('dbdump.scheduler.execute_backup')
    @patch('dbdump.scheduler.load_config')
    def test_config_error_logged(self, mock_load_config, mock_execute, caplog):
        mock_load_config.side_effect = ConfigError('No settings file found')

        scheduler_module.run_scheduled_backup('/etc/dbdump.ini')

        mock_execute.assert_not_called()
        assert 'No settings file found' in caplog.text

    @patch('dbdump.scheduler.execute_backup')
    @patch('dbdump.scheduler.load_config')
    def test_lock_error_logged(self, mock_load_config, mock_execute, caplog):
        mock_execute.side_effect = LockError('Another run holds the lock')

        scheduler_module.run_scheduled_backup('/etc/dbdump.ini')

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert 'Another run holds the lock' in errors[0].message
