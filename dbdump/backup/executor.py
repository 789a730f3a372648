"""
Backup executor - orchestrates a complete backup run.

Workflow:
1. Acquire the run lock on the backup root
2. Resolve enabled sites into dump jobs
3. Dump (and compress) each site's database
4. Copy the resulting files to the enabled remote servers
5. Enforce the retention policy on the backup root
6. Release the run lock

Failures inside a step are logged and confined to the site, server or
file they concern; only configuration and lock errors stop a run.
"""

import os
import errno
import fcntl
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from dbdump.config import BackupConfig, Config, ServerConfig
from .commands import CommandRunner
from .formats import FormatRegistry, build_registry
from .sites import SiteJob, resolve_sites
from .transfer import SFTPClient, TransferStage
from .retention import RetentionManager


logger = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when another run holds the backup root lock."""
    pass


class RunLock:
    """
    Exclusive lock on a backup root, held for the duration of a run.

    Uses an flock()ed lock file, so the lock goes away with the process.
    """

    def __init__(self, path: str):
        self.path = path
        self._file = None

    def acquire(self):
        """
        Take the lock without waiting.

        Raises:
            LockError: If another process holds the lock
        """
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        self._file = open(self.path, 'a+')
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            self._file.close()
            self._file = None
            if e.errno in (errno.EAGAIN, errno.EACCES):
                raise LockError(f"Another run holds the lock [{self.path}]")
            raise LockError(f"Unable to lock [{self.path}]: {e}")

        self._file.seek(0)
        self._file.truncate()
        self._file.write(f"{os.getpid()}\n")
        self._file.flush()

    def release(self):
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()


class DumpPipeline:
    """
    Dumps and compresses one site's database.

    An existing archive or sql file for today is reused instead of being
    recreated, unless force is set.
    """

    def __init__(self, root: str, runner: CommandRunner, force: bool = False):
        """
        Initialize dump pipeline.

        Args:
            root: Backup root; job paths are relative to it
            runner: Executes the dump and compress command lines
            force: Recreate files that already exist
        """
        self.root = root
        self.runner = runner
        self.force = force

    def _local(self, relative_path: str) -> str:
        return os.path.join(self.root, relative_path)

    def run(self, job: SiteJob) -> Optional[str]:
        """
        Produce the backup file for a site.

        Args:
            job: Resolved site job

        Returns:
            Relative path of the finished artifact, or None if the site
            failed
        """
        sql = job.sql_path
        archive = job.archive_path

        os.makedirs(os.path.dirname(self._local(sql)), exist_ok=True)

        if self.force:
            if not self._remove_existing(job, sql, archive):
                return None
        elif archive and os.path.exists(self._local(archive)):
            logger.warning(f"File [{archive}] exists, will not overwrite, skipping site {job.site}")
            return archive

        if not self.force and os.path.exists(self._local(sql)):
            logger.warning(f"File [{sql}] exists, will not overwrite, skipping dump for {job.site}")
        else:
            cmd = job.dump_command(sql)
            res = self.runner.run(cmd)
            if res:
                logger.error(f"Dump failed for {job.site}: res=[{res}], cmd=[{cmd}]")
                return None
            logger.info(f"Dumped database {job.db} to [{sql}]")

        if not archive:
            return sql

        cmd = job.compress_command(sql)
        res = self.runner.run(cmd)
        if res:
            logger.error(f"Compression failed for {job.site}: res=[{res}], cmd=[{cmd}]")
            return None

        logger.info(f"Compressed [{sql}] to [{archive}]")
        return archive

    def _remove_existing(self, job: SiteJob, *paths) -> bool:
        for path in paths:
            if not path or not os.path.exists(self._local(path)):
                continue
            try:
                os.remove(self._local(path))
            except OSError as e:
                logger.error(f"Unable to remove [{path}] for {job.site}: {e}")
                return False
            logger.info(f"Force mode: removed existing file [{path}]")
        return True


class RunResult:
    """Outcome of a backup run."""

    def __init__(self):
        self.started_at = datetime.now()
        self.completed_at = None
        self.artifacts: List[str] = []
        self.sites_enabled = 0
        self.sites_failed = 0
        self.transfer = {}
        self.retention = {}

    @property
    def sites_skipped(self) -> int:
        return self.sites_enabled - len(self.artifacts) - self.sites_failed

    def __repr__(self):
        return (
            f'<RunResult artifacts={len(self.artifacts)} '
            f'failed={self.sites_failed} skipped={self.sites_skipped}>'
        )


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for a configuration.
    """

    def __init__(
        self,
        config: BackupConfig,
        registry: Optional[FormatRegistry] = None,
        runner: Optional[CommandRunner] = None,
        client_factory: Callable[[ServerConfig], SFTPClient] = SFTPClient,
        force: Optional[bool] = None,
        today: Optional[date] = None
    ):
        """
        Initialize backup executor.

        Args:
            config: Run configuration
            registry: Dump/compress formats (default: built from config)
            runner: Command runner (default: shell runner in the backup root)
            client_factory: Builds remote sessions for the transfer stage
            force: Overrides LOCAL.FORCE when given
            today: Date for the dump file names (default: today)
        """
        self.config = config
        self.root = config.local.root
        self.registry = registry or build_registry(config.formats, config.compress_formats)
        self.runner = runner or CommandRunner(cwd=self.root, timeout=config.local.timeout)
        self.client_factory = client_factory
        self.force = config.local.force if force is None else force
        self.today = today

    def execute(self) -> RunResult:
        """
        Execute a backup run.

        Returns:
            RunResult with the produced artifacts and step summaries

        Raises:
            LockError: If another run is using the backup root
        """
        with RunLock(os.path.join(self.root, Config.LOCK_FILE)):
            return self._execute_workflow()

    def _execute_workflow(self) -> RunResult:
        result = RunResult()
        logger.info(f"Starting backup run (root: {self.root}, force: {self.force})")

        # Step 1: Dump sites
        result.sites_enabled = len(self.config.enabled_sites)
        jobs = resolve_sites(self.config, self.registry, self.today)
        pipeline = DumpPipeline(self.root, self.runner, force=self.force)

        for job in jobs:
            try:
                artifact = pipeline.run(job)
            except Exception as e:
                logger.error(f"Backup of site {job.site} failed: {e}")
                artifact = None

            if artifact is None:
                result.sites_failed += 1
            else:
                result.artifacts.append(artifact)

        logger.info(
            f"Dump complete. Artifacts: {len(result.artifacts)}, "
            f"Failed: {result.sites_failed}, Skipped: {result.sites_skipped}"
        )

        # Step 2: Copy to remote servers
        try:
            stage = TransferStage(self.config.enabled_servers, self.client_factory)
            result.transfer = stage.transfer(result.artifacts, self.root)
        except Exception as e:
            logger.error(f"Transfer to remote servers failed: {e}")

        # Step 3: Retention
        try:
            manager = RetentionManager(
                self.root,
                self.config.local.retain,
                keep_zero=self.config.local.keep_zero,
                extensions=self.registry.compress_extensions
            )
            result.retention = manager.enforce()
        except Exception as e:
            logger.error(f"Retention cleanup failed: {e}")

        result.completed_at = datetime.now()
        logger.info("Backup run completed")
        return result


def execute_backup(config: BackupConfig, force: Optional[bool] = None) -> RunResult:
    """
    Execute a backup run for a configuration.

    Args:
        config: Run configuration
        force: Overrides LOCAL.FORCE when given

    Returns:
        RunResult of the run
    """
    executor = BackupExecutor(config, force=force)
    return executor.execute()
