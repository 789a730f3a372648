"""
Backup module for dbdump.

This module handles the core backup functionality including:
- Dump and compress format templates
- Site resolution
- Dump/compress execution
- Transfer to remote servers (SSH/SFTP)
- Retention policy enforcement
"""

from .executor import BackupExecutor, DumpPipeline, LockError, execute_backup
from .formats import FormatRegistry, FormatNotFound, build_registry
from .sites import SiteJob, resolve_sites
from .commands import CommandRunner
from .transfer import SFTPClient, TransferStage, TransferError
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'DumpPipeline',
    'LockError',
    'execute_backup',
    'FormatRegistry',
    'FormatNotFound',
    'build_registry',
    'SiteJob',
    'resolve_sites',
    'CommandRunner',
    'SFTPClient',
    'TransferStage',
    'TransferError',
    'RetentionManager'
]
