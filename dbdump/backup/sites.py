"""
Site resolution.

Turns the enabled SITES entries into SiteJob descriptors, falling back
from site-level to LOCAL-level settings for the database user, dump
format and compression format.
"""

import os
import shlex
import logging
from datetime import date
from typing import List, Optional

from dbdump.config import BackupConfig, SiteConfig
from .formats import FormatRegistry, FormatNotFound, CompressFormat


logger = logging.getLogger(__name__)

# backups/<YYYY>/<MM>/<db>-<YYYYMMDD>.sql
DUMP_FILE_FORMAT = 'backups/%04d/%02d/%s-%04d%02d%02d.sql'


def dump_file_path(db: str, day: date) -> str:
    """Relative path of the sql dump for a database on a given day."""
    return DUMP_FILE_FORMAT % (day.year, day.month, db, day.year, day.month, day.day)


class SiteJob:
    """Resolved parameters for backing up one site."""

    def __init__(
        self,
        site: str,
        db: str,
        user: str,
        dump_cmd: str,
        sql_path: str,
        compress: Optional[CompressFormat] = None
    ):
        self.site = site
        self.db = db
        self.user = user
        self.dump_cmd = dump_cmd
        self.sql_path = sql_path
        self.compress = compress

    @property
    def archive_path(self) -> Optional[str]:
        """Path of the compressed dump, or None when compression is off."""
        if self.compress is None:
            return None
        return self.sql_path + self.compress.ext

    def dump_command(self, sql_file: str) -> str:
        return self.dump_cmd.format(
            user=shlex.quote(self.user),
            db=shlex.quote(self.db),
            file=shlex.quote(sql_file)
        )

    def compress_command(self, sql_file: str) -> str:
        return self.compress.command(shlex.quote(sql_file))

    def __repr__(self):
        return f'<SiteJob {self.site} db={self.db} sql={self.sql_path}>'


def resolve_site(
    site: SiteConfig,
    config: BackupConfig,
    registry: FormatRegistry,
    today: date
) -> Optional[SiteJob]:
    """
    Resolve a single site, or return None if it must be skipped.

    Sites whose path is not an existing directory are skipped quietly.
    Missing database users and unknown formats are logged as warnings.
    """
    # Relative site paths are relative to the backup root
    if not site.path or not os.path.isdir(os.path.join(config.local.root, site.path)):
        logger.debug(f"Site {site.name}: path [{site.path}] is not a directory, skipping site")
        return None

    if not site.db:
        logger.warning(f"No database name specified for {site.name}, skipping site")
        return None

    user = site.dbuser or config.local.dbuser
    if not user:
        logger.warning(f"No database user specified for {site.name}, skipping site")
        return None

    fmt = site.fmt or config.local.fmt
    if not fmt:
        logger.warning(f"No db format specified for {site.name}, skipping site")
        return None

    try:
        dump_cmd = registry.resolve_dump_format(fmt)
    except FormatNotFound as e:
        logger.warning(f"Unknown {e.kind} format [{e.name}] for {site.name}, skipping site")
        return None

    compress = None
    compress_name = site.compress or config.local.compress
    if compress_name:
        try:
            compress = registry.resolve_compress_format(compress_name)
        except FormatNotFound as e:
            logger.warning(f"Unknown {e.kind} format [{e.name}] for {site.name}, skipping site")
            return None

    return SiteJob(
        site=site.name,
        db=site.db,
        user=user,
        dump_cmd=dump_cmd,
        sql_path=dump_file_path(site.db, today),
        compress=compress
    )


def resolve_sites(
    config: BackupConfig,
    registry: FormatRegistry,
    today: Optional[date] = None
) -> List[SiteJob]:
    """
    Resolve every enabled site, in site name order.

    Args:
        config: Run configuration
        registry: Available dump and compress formats
        today: Date used for the dump file names (default: today)

    Returns:
        List of SiteJob for the sites that can be backed up
    """
    if today is None:
        today = date.today()

    jobs = []
    for site in config.enabled_sites:
        job = resolve_site(site, config, registry, today)
        if job is not None:
            jobs.append(job)
    return jobs
