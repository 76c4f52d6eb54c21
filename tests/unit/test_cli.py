"""
Unit tests for the command-line entry point (gpgbackup/cli.py).
"""

import json
from datetime import datetime
from unittest.mock import patch

import pytest

from gpgbackup import __version__
from gpgbackup.cli import EXIT_FAILURE, EXIT_OK, build_context, main, parse_args
from gpgbackup.exceptions import RecipientNotFound
from gpgbackup.models import RunSummary


@pytest.fixture
def config_path(tmp_path):
    """A valid config file whose backup root lives in tmp_path."""
    path = tmp_path / 'gpgbackup.json'
    path.write_text(json.dumps({
        'backup_items': [str(tmp_path)],
        'backup_root': str(tmp_path / 'cloud-backup'),
        'label': 'proj',
        'host_tag': 'box',
    }))
    return path


class TestParseArgs:
    """Test option parsing."""

    def test_defaults(self):
        args = parse_args([])

        assert args.dry_run is False
        assert args.retain is True
        assert args.check is False
        assert args.config is None

    @pytest.mark.parametrize("flag", ['--dry-run', '--dryrun'])
    def test_dry_run_aliases(self, flag):
        assert parse_args([flag]).dry_run is True

    @pytest.mark.parametrize("flag", ['--no-retain', '--no-retention'])
    def test_no_retain_aliases(self, flag):
        assert parse_args([flag]).retain is False

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            parse_args(['--version'])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_unknown_option(self):
        with pytest.raises(SystemExit) as exc_info:
            parse_args(['--bogus'])

        assert exc_info.value.code == 2


class TestBuildContext:
    """Test run context construction."""

    def test_paths_are_dated(self, make_config):
        config = make_config(label='my proj')
        args = parse_args(['--dry-run', '--no-retain'])

        context = build_context(config, args, now=datetime(2024, 1, 15, 12, 0, 0))

        assert context.work_dir == config.backup_root_path / '2024-01-15'
        assert context.log_file.name == 'my_proj_cloud_backup_2024-01-15_12-00-00.log'
        assert context.stamp == '2024-01-15_12-00-00'
        assert context.dry_run is True
        assert context.retain is False


class TestMain:
    """Test exit codes and mode dispatch."""

    def test_init_config(self, tmp_path):
        path = tmp_path / 'new.json'

        assert main(['--init-config', '--config', str(path)]) == EXIT_OK
        assert path.exists()

    def test_init_config_does_not_overwrite(self, config_path):
        before = config_path.read_text()

        assert main(['--init-config', '--config', str(config_path)]) == EXIT_OK
        assert config_path.read_text() == before

    def test_missing_config(self, tmp_path):
        assert main(['--config', str(tmp_path / 'absent.json')]) == EXIT_FAILURE

    @patch('gpgbackup.cli.BackupExecutor')
    def test_successful_run(self, mock_executor, config_path):
        mock_executor.return_value.run.return_value = RunSummary()

        assert main(['--config', str(config_path)]) == EXIT_OK
        mock_executor.return_value.run.assert_called_once()

        context = mock_executor.call_args[0][0]
        assert context.config.label == 'proj'
        assert context.log_file.exists()

    @patch('gpgbackup.cli.BackupExecutor')
    def test_flags_reach_context(self, mock_executor, config_path):
        main(['--config', str(config_path), '--dry-run', '--no-retain', '--verbose'])

        context = mock_executor.call_args[0][0]
        assert context.dry_run is True
        assert context.retain is False
        assert context.verbose is True

    @patch('gpgbackup.cli.BackupExecutor')
    def test_backup_error_exits_nonzero(self, mock_executor, config_path):
        mock_executor.return_value.run.side_effect = RecipientNotFound("Fingerprint not found", hint="import it")

        assert main(['--config', str(config_path)]) == EXIT_FAILURE

    @patch('gpgbackup.cli.BackupExecutor')
    def test_unexpected_error_exits_nonzero(self, mock_executor, config_path):
        mock_executor.return_value.run.side_effect = RuntimeError("boom")

        assert main(['--config', str(config_path)]) == EXIT_FAILURE

    @pytest.mark.parametrize("passed,expected", [(True, EXIT_OK), (False, EXIT_FAILURE)])
    @patch('gpgbackup.cli.BackupExecutor')
    def test_check_mode(self, mock_executor, config_path, passed, expected):
        mock_executor.return_value.check.return_value = passed

        assert main(['--config', str(config_path), '--check']) == expected
        mock_executor.return_value.run.assert_not_called()

    @patch('gpgbackup.cli.BackupExecutor')
    def test_config_from_environment(self, mock_executor, config_path, monkeypatch):
        monkeypatch.setenv('GPGBACKUP_CONFIG', str(config_path))
        monkeypatch.setenv('GPGBACKUP_LABEL', 'fromenv')

        assert main([]) == EXIT_OK
        assert mock_executor.call_args[0][0].config.label == 'fromenv'
