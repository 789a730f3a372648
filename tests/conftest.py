"""
Shared pytest fixtures for dbdump tests.

This module provides fixtures for:
- A temporary backup root with site directories
- Backup configurations
- A fake command runner that imitates dump and compress tools
- A fake remote transfer client
- A mocked paramiko SSHClient
"""

import shlex
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from dbdump.config import BackupConfig, LocalSettings, SiteConfig, ServerConfig
from dbdump.backup.formats import build_registry
from dbdump.backup.transfer import TransferError


# Test formats understood by FakeRunner
TEST_FORMATS = {'fake': 'dump {user} {db} {file}'}
TEST_COMPRESS = {'fakezip': {'cmd': 'pack {file}', 'ext': '.gz'}}


class FakeRunner:
    """
    Command runner imitating the test dump/compress tools.

    'dump <user> <db> <file>' writes <file>; 'pack <file>' replaces <file>
    with <file>.gz. Commands listed in `failures` return their output
    without touching the filesystem.
    """

    def __init__(self, root, failures=None):
        self.root = Path(root)
        self.failures = dict(failures or {})
        self.commands = []

    def run(self, command):
        self.commands.append(command)

        for prefix, output in self.failures.items():
            if command.startswith(prefix):
                return output

        args = shlex.split(command)
        if args[0] == 'dump':
            target = self.root / args[3]
            target.write_text(f"-- dump of {args[2]} by {args[1]}\n")
        elif args[0] == 'pack':
            source = self.root / args[1]
            source.rename(source.with_name(source.name + '.gz'))
        else:
            return f"unknown command: {args[0]}"
        return ''


class FakeClient:
    """Remote session recording uploads instead of performing them."""

    def __init__(self, server, fail_connect=False, fail_files=()):
        self.server = server
        self.fail_connect = fail_connect
        self.fail_files = set(fail_files)
        self.connected = False
        self.closed = False
        self.dirs = []
        self.uploads = []

    def connect(self):
        if self.fail_connect:
            raise TransferError("Connection refused")
        self.connected = True

    def makedirs(self, remote_dir):
        self.dirs.append(remote_dir)

    def put(self, local_path, remote_path):
        if remote_path in self.fail_files:
            raise TransferError(f"Failed to upload {local_path}: disk full")
        self.uploads.append((local_path, remote_path))

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Builds FakeClients and remembers them by server name."""

    def __init__(self, fail_connect=(), fail_files=()):
        self.fail_connect = set(fail_connect)
        self.fail_files = fail_files
        self.clients = {}

    def __call__(self, server):
        client = FakeClient(
            server,
            fail_connect=server.name in self.fail_connect,
            fail_files=self.fail_files
        )
        self.clients[server.name] = client
        return client


@pytest.fixture
def backup_root(tmp_path):
    """
    Create a backup root with two site directories.

    Creates:
    - www/site1
    - www/site2
    """
    root = tmp_path / 'vhost'
    (root / 'www' / 'site1').mkdir(parents=True)
    (root / 'www' / 'site2').mkdir(parents=True)
    return root


@pytest.fixture
def backup_config(backup_root):
    """
    Configuration with one enabled compressed site and one disabled site.
    """
    local = LocalSettings(
        root=str(backup_root),
        dbuser='dbuser',
        fmt='fake',
        compress='fakezip'
    )
    sites = {
        'SITE1': SiteConfig('SITE1', enabled=True, path=str(backup_root / 'www' / 'site1'), db='site1'),
        'SITE2': SiteConfig('SITE2', enabled=False, path=str(backup_root / 'www' / 'site2'), db='site2'),
    }
    return BackupConfig(
        local=local,
        sites=sites,
        formats=TEST_FORMATS,
        compress_formats=TEST_COMPRESS
    )


@pytest.fixture
def server_config():
    """An enabled and a disabled remote server."""
    return {
        'BACKUP1': ServerConfig('BACKUP1', enabled=True, host='10.0.0.1', user='backup'),
        'BACKUP2': ServerConfig('BACKUP2', enabled=False, host='10.0.0.2', user='backup'),
    }


@pytest.fixture
def registry():
    """Format registry with the built-ins plus the fake test formats."""
    return build_registry(TEST_FORMATS, TEST_COMPRESS)


@pytest.fixture
def fake_runner(backup_root):
    return FakeRunner(backup_root)


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def make_backup_file(backup_root):
    """
    Create a backup file under backups/<YYYY>/<MM>/.

    Usage: make_backup_file('site1-20240101.sql.gz', size=10)
    """
    def _make(name, size=10):
        digits = name.rsplit('-', 1)[1][:8]
        directory = backup_root / 'backups' / digits[:4] / digits[4:6]
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(b'x' * size)
        return path

    return _make


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    Returns the patched SSHClient class; its open_sftp() returns a MagicMock.
    """
    with patch('dbdump.backup.transfer.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh


@pytest.fixture
def restore_logging():
    """Restore root logger handlers changed by configure_logging()."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level

    yield

    for handler in root_logger.handlers[:]:
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


@pytest.fixture
def make_client_factory():
    """
    Build a FakeClientFactory with failing servers or files.

    Usage: make_client_factory(fail_connect={'BACKUP1'}, fail_files={'backups/...'})
    """
    return FakeClientFactory
