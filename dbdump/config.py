"""
Configuration loading for dbdump.

The configuration file is an INI file named '.dbdump.ini' or 'dbdump.ini',
searched for in the current directory, the program directory and the
user's home directory (first hit wins). Example:

    [LOCAL]
    DBUSER=dbuser
    VHOST=/var/www/
    FORMAT=mysql
    COMPRESS=gzip
    RETAIN=7

    [SITES]
    SITE1=1

    [SITE1]
    path=/var/www/site1
    db=site1

    [SERVERS]
    SERVER1=1

    [SERVER1]
    ip=127.0.0.1
    user=username

    [FORMATS]
    mariadb=mariadb-dump -u {user} {db} >{file}

    [COMPRESS]
    bzip2.cmd=bzip2 {file}
    bzip2.ext=.bz2
"""

import os
import sys
import configparser
from typing import Dict, Iterable, List, Optional


class Config:
    """Process-level settings, taken from the environment."""

    CONFIG_FILE = os.environ.get('DBDUMP_CONFIG')
    CONFIG_NAMES = ('.dbdump.ini', 'dbdump.ini')
    DEBUG = os.environ.get('DBDUMP_DEBUG', 'false').lower() == 'true'

    # Log file, relative to the backup root
    LOG_FILE = os.path.join('backups', 'dbdump.log')
    LOG_MAX_BYTES = 10485760  # 10MB
    LOG_BACKUP_COUNT = 10

    # Run lock, relative to the backup root
    LOCK_FILE = os.path.join('backups', '.dbdump.lock')


class ConfigError(Exception):
    """Raised when the configuration cannot be found, read or parsed."""
    pass


class LocalSettings:
    """Global defaults from the LOCAL section."""

    def __init__(
        self,
        root: str,
        dbuser: Optional[str] = None,
        fmt: Optional[str] = None,
        compress: Optional[str] = None,
        retain: int = 0,
        keep_zero: bool = False,
        force: bool = False,
        timeout: Optional[float] = None,
        schedule: Optional[str] = None
    ):
        self.root = root
        self.dbuser = dbuser
        self.fmt = fmt
        self.compress = compress
        self.retain = retain
        self.keep_zero = keep_zero
        self.force = force
        self.timeout = timeout
        self.schedule = schedule

    def __repr__(self):
        return f'<LocalSettings root={self.root} retain={self.retain} force={self.force}>'


class SiteConfig:
    """A web application and the database backing it."""

    def __init__(
        self,
        name: str,
        enabled: bool = False,
        path: Optional[str] = None,
        db: Optional[str] = None,
        fmt: Optional[str] = None,
        compress: Optional[str] = None,
        dbuser: Optional[str] = None
    ):
        self.name = name
        self.enabled = enabled
        self.path = path
        self.db = db
        self.fmt = fmt
        self.compress = compress
        self.dbuser = dbuser

    def __repr__(self):
        return f'<SiteConfig {self.name} db={self.db} enabled={self.enabled}>'


class ServerConfig:
    """A remote server receiving copies of the backup files."""

    def __init__(
        self,
        name: str,
        enabled: bool = False,
        host: Optional[str] = None,
        user: Optional[str] = None,
        port: int = 22,
        key: Optional[str] = None
    ):
        self.name = name
        self.enabled = enabled
        self.host = host
        self.user = user
        self.port = port
        self.key = key

    def __repr__(self):
        return f'<ServerConfig {self.name} host={self.host} enabled={self.enabled}>'


class BackupConfig:
    """Fully resolved configuration for one run."""

    def __init__(
        self,
        local: LocalSettings,
        sites: Optional[Dict[str, SiteConfig]] = None,
        servers: Optional[Dict[str, ServerConfig]] = None,
        formats: Optional[Dict[str, str]] = None,
        compress_formats: Optional[Dict[str, Dict[str, str]]] = None
    ):
        self.local = local
        self.sites = sites or {}
        self.servers = servers or {}
        self.formats = formats or {}
        self.compress_formats = compress_formats or {}

    @property
    def enabled_sites(self) -> List[SiteConfig]:
        return [self.sites[name] for name in sorted(self.sites) if self.sites[name].enabled]

    @property
    def enabled_servers(self) -> List[ServerConfig]:
        return [self.servers[name] for name in sorted(self.servers) if self.servers[name].enabled]

    def __repr__(self):
        return f'<BackupConfig root={self.local.root} sites={len(self.sites)} servers={len(self.servers)}>'


def default_search_dirs() -> List[str]:
    """Directories searched for a configuration file, in order."""
    program_dir = os.path.dirname(os.path.abspath(sys.argv[0])) if sys.argv and sys.argv[0] else '.'
    return ['.', program_dir, os.path.expanduser('~')]


def find_config_file(search_dirs: Optional[Iterable[str]] = None) -> str:
    """
    Locate the configuration file.

    Args:
        search_dirs: Directories to search (default: ., program dir, ~)

    Returns:
        Path to the first configuration file found

    Raises:
        ConfigError: If no configuration file exists in any directory
    """
    if Config.CONFIG_FILE:
        if not os.path.isfile(Config.CONFIG_FILE):
            raise ConfigError(f"No settings file [{Config.CONFIG_FILE}] found")
        return Config.CONFIG_FILE

    if search_dirs is None:
        search_dirs = default_search_dirs()

    searched = []
    for directory in search_dirs:
        for name in Config.CONFIG_NAMES:
            path = os.path.join(os.path.expanduser(directory), name)
            if os.path.isfile(path):
                return path
            searched.append(path)

    raise ConfigError(
        f"No settings file found (searched: {', '.join(searched)}). "
        f"Please consult the documentation for more information."
    )


def _as_bool(value, where: str) -> bool:
    if value is None or value.strip() == '':
        return False
    try:
        return configparser.ConfigParser.BOOLEAN_STATES[value.strip().lower()]
    except KeyError:
        raise ConfigError(f"Invalid boolean value [{value}] for {where}")


def _as_int(value, where: str, default: int = 0) -> int:
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Invalid integer value [{value}] for {where}")


def _as_float(value, where: str) -> Optional[float]:
    if value is None or value.strip() == '':
        return None
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"Invalid number value [{value}] for {where}")


def _section(parser: configparser.ConfigParser, name: str, lower_keys: bool = True) -> Dict[str, str]:
    """Return a section as a dict, matching the section name case-insensitively."""
    for section in parser.sections():
        if section == name or section.lower() == name.lower():
            return {
                key.lower() if lower_keys else key: value
                for key, value in parser.items(section)
            }

    return {}


def _enable_map(parser: configparser.ConfigParser, name: str) -> Dict[str, bool]:
    """Read a SITES/SERVERS style section, keeping the case of the entry names."""
    for section in parser.sections():
        if section.lower() == name.lower():
            return {
                key: _as_bool(value, f"{section}.{key}")
                for key, value in parser.items(section)
            }
    return {}


def _compress_section(values: Dict[str, str]) -> Dict[str, Dict[str, str]]:
    entries = {}
    for key, value in values.items():
        name, _, field = key.rpartition('.')
        if not name:
            # Bare 'name=cmd' without an extension; left for the registry to reject
            name, field = key, 'cmd'
        entries.setdefault(name, {})[field.lower()] = value
    return entries


def parse_config(parser: configparser.ConfigParser) -> BackupConfig:
    """
    Resolve a parsed INI file into a BackupConfig.

    Raises:
        ConfigError: If mandatory settings are missing or values are invalid
    """
    local_values = _section(parser, 'LOCAL')
    if not local_values.get('vhost'):
        raise ConfigError("Mandatory setting LOCAL.VHOST (backup root) is missing")

    local = LocalSettings(
        root=os.path.expanduser(local_values['vhost']),
        dbuser=local_values.get('dbuser') or None,
        fmt=local_values.get('format') or None,
        compress=local_values.get('compress') or None,
        retain=_as_int(local_values.get('retain'), 'LOCAL.RETAIN'),
        keep_zero=_as_bool(local_values.get('keepzero'), 'LOCAL.KEEPZERO'),
        force=_as_bool(local_values.get('force'), 'LOCAL.FORCE'),
        timeout=_as_float(local_values.get('timeout'), 'LOCAL.TIMEOUT'),
        schedule=local_values.get('schedule') or None
    )

    sites = {}
    for name, enabled in _enable_map(parser, 'SITES').items():
        values = _section(parser, name)
        sites[name] = SiteConfig(
            name=name,
            enabled=enabled,
            path=values.get('path'),
            db=values.get('db'),
            fmt=values.get('fmt') or None,
            compress=values.get('compress') or None,
            dbuser=values.get('dbuser') or None
        )

    servers = {}
    for name, enabled in _enable_map(parser, 'SERVERS').items():
        values = _section(parser, name)
        servers[name] = ServerConfig(
            name=name,
            enabled=enabled,
            host=values.get('ip') or values.get('host'),
            user=values.get('user'),
            port=_as_int(values.get('port'), f"{name}.port", default=22),
            key=values.get('key') or None
        )

    return BackupConfig(
        local=local,
        sites=sites,
        servers=servers,
        formats=_section(parser, 'FORMATS', lower_keys=False),
        compress_formats=_compress_section(_section(parser, 'COMPRESS', lower_keys=False))
    )


def load_config(path: Optional[str] = None) -> BackupConfig:
    """
    Load and resolve the configuration file.

    Args:
        path: Explicit configuration file path (default: search for one)

    Returns:
        BackupConfig instance

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if path is None:
        path = find_config_file()
    elif not os.path.isfile(path):
        raise ConfigError(f"No settings file [{path}] found")

    parser = configparser.ConfigParser(interpolation=None)
    # Site and server names are matched against section names
    parser.optionxform = str

    try:
        with open(path, 'r', encoding='utf-8') as f:
            parser.read_file(f, source=path)
    except (OSError, UnicodeDecodeError, configparser.Error) as e:
        raise ConfigError(f"Unable to load settings file [{path}]: {e}")

    return parse_config(parser)
