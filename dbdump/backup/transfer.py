"""
Copying backup files to remote servers over SSH/SFTP.

Each artifact is uploaded to the same relative path on every enabled
server, relative to the remote user's login directory. Authentication
uses SSH keys (an explicit key file, the SSH agent or ~/.ssh defaults).
"""

import logging
import posixpath
import stat
from pathlib import Path
from typing import Callable, Dict, Iterable, List

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from dbdump.config import ServerConfig


logger = logging.getLogger(__name__)


class TransferError(Exception):
    """Raised when a remote connection or upload fails."""
    pass


class SFTPClient:
    """
    Remote session to one server.

    Wraps a paramiko SSHClient and its SFTP channel.
    """

    def __init__(self, server: ServerConfig):
        """
        Initialize SFTP client.

        Args:
            server: Server to connect to
        """
        self.host = server.host
        self.port = server.port
        self.username = server.user
        self.private_key_path = server.key

        self.ssh_client = None
        self.sftp_client = None

    def connect(self):
        """
        Establish SSH connection and open the SFTP channel.

        Raises:
            TransferError: If connection fails
        """
        if not self.host:
            raise TransferError("No host address configured")

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.load_system_host_keys()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'username': self.username,
                'timeout': 30
            }

            if self.private_key_path:
                key_path = Path(self.private_key_path).expanduser()
                if not key_path.exists():
                    raise TransferError(f"Private key not found: {self.private_key_path}")
                connect_kwargs['key_filename'] = str(key_path)

            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()

        except TransferError:
            self.close()
            raise
        except paramiko.AuthenticationException as e:
            self.close()
            raise TransferError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise TransferError(f"SSH connection failed: {e}")
        except Exception as e:
            self.close()
            raise TransferError(f"Failed to connect to {self.host}: {e}")

    def makedirs(self, remote_dir: str):
        """
        Create a remote directory and any missing parents.

        Raises:
            TransferError: If a directory cannot be created
        """
        current = '/' if remote_dir.startswith('/') else ''
        for part in remote_dir.split('/'):
            if not part:
                continue
            current = posixpath.join(current, part)

            try:
                attrs = self.sftp_client.stat(current)
            except FileNotFoundError:
                attrs = None
            except Exception as e:
                raise TransferError(f"Failed to stat remote directory {current}: {e}")

            if attrs is None:
                try:
                    self.sftp_client.mkdir(current)
                except Exception as e:
                    raise TransferError(f"Failed to create remote directory {current}: {e}")
            elif not stat.S_ISDIR(attrs.st_mode):
                raise TransferError(f"Remote path exists and is not a directory: {current}")

    def put(self, local_path: str, remote_path: str):
        """
        Upload a single file via SFTP.

        Raises:
            TransferError: If upload fails
        """
        try:
            self.sftp_client.put(local_path, remote_path)
        except FileNotFoundError:
            raise TransferError(f"Local file not found: {local_path}")
        except PermissionError:
            raise TransferError(f"Permission denied writing remote file: {remote_path}")
        except Exception as e:
            raise TransferError(f"Failed to upload {local_path}: {e}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Error closing SFTP channel to {self.host}: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Error closing SSH connection to {self.host}: {e}")
            self.ssh_client = None


class TransferStage:
    """
    Ships this run's artifacts to every enabled server.

    Transfers are best-effort: a server that cannot be reached, or a file
    that fails to upload, is logged and the remaining work continues.
    """

    def __init__(
        self,
        servers: Iterable[ServerConfig],
        client_factory: Callable[[ServerConfig], SFTPClient] = SFTPClient
    ):
        """
        Initialize transfer stage.

        Args:
            servers: Enabled servers
            client_factory: Builds a remote session for a server
        """
        self.servers = list(servers)
        self.client_factory = client_factory

    def transfer(self, artifacts: List[str], root: str) -> Dict[str, int]:
        """
        Upload artifacts to all servers.

        Args:
            artifacts: Artifact paths relative to root
            root: Local backup root

        Returns:
            Dict with counts: {'servers_failed': int, 'uploaded': int, 'failed': int}
        """
        result = {
            'servers_failed': 0,
            'uploaded': 0,
            'failed': 0
        }

        if not self.servers:
            return result

        if not artifacts:
            logger.warning("No files processed to transfer to other servers")
            return result

        for server in self.servers:
            client = self.client_factory(server)
            try:
                client.connect()
            except TransferError as e:
                logger.error(f"Unable to connect to server {server.name} [{server.host}]: {e}")
                result['servers_failed'] += 1
                continue

            try:
                for artifact in artifacts:
                    if self._upload(client, server, artifact, root):
                        result['uploaded'] += 1
                    else:
                        result['failed'] += 1
            finally:
                client.close()

        return result

    def _upload(self, client: SFTPClient, server: ServerConfig, artifact: str, root: str) -> bool:
        remote_path = Path(artifact).as_posix()
        local_path = str(Path(root) / artifact)

        try:
            client.makedirs(posixpath.dirname(remote_path))
            client.put(local_path, remote_path)
        except TransferError as e:
            logger.error(f"Transfer of [{artifact}] to {server.name} [{server.host}] failed: {e}")
            return False

        logger.info(f"Copied [{artifact}] to {server.name} [{server.host}]")
        return True
