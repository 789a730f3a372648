"""
Dump and compression command templates.

Built-in formats:
- mysql: mysqldump into a plain sql file
- pg: pg_dump into a plain sql file
- gzip, zip, compress: compress a dump file in place

Templates are str.format strings. Dump templates may use {user}, {db}
and {file}; compress templates take exactly one field, {file}.
"""

import logging
from string import Formatter
from typing import Dict, Optional, Set


logger = logging.getLogger(__name__)

DUMP_FIELDS = {'user', 'db', 'file'}
COMPRESS_FIELD = 'file'

DEFAULT_FORMATS = {
    'mysql': 'mysqldump -u {user} --add-drop-table {db} >{file}',
    'pg': 'pg_dump -U {user} -x -O -f {file} {db}',
}

DEFAULT_COMPRESS_FORMATS = {
    'gzip': {'cmd': 'gzip {file}', 'ext': '.gz'},
    'zip': {'cmd': 'zip -qm {file}.zip {file}', 'ext': '.zip'},
    'compress': {'cmd': 'compress {file}', 'ext': '.Z'},
}


class FormatNotFound(KeyError):
    """Raised when a dump or compress format name is not registered."""

    def __init__(self, kind: str, name: str):
        super().__init__(name)
        self.kind = kind
        self.name = name

    def __str__(self):
        return f"unknown {self.kind} format [{self.name}]"


class CompressFormat:
    """Extension and command template of a compression format."""

    def __init__(self, ext: str, cmd: str):
        self.ext = ext
        self.cmd = cmd

    def command(self, path: str) -> str:
        return self.cmd.format(file=path)

    def __eq__(self, other):
        if not isinstance(other, CompressFormat):
            return NotImplemented
        return (self.ext, self.cmd) == (other.ext, other.cmd)

    def __repr__(self):
        return f'<CompressFormat ext={self.ext} cmd={self.cmd!r}>'


def template_fields(template: str) -> Set[str]:
    """
    Collect the replacement field names used by a template.

    Raises:
        ValueError: If the template is not a valid format string or uses
            positional fields
    """
    fields = set()
    for _, name, _, _ in Formatter().parse(template):
        if name is None:
            continue
        if name == '' or name.isdigit():
            raise ValueError(f"positional placeholder in template: {template}")
        fields.add(name)
    return fields


class FormatRegistry:
    """
    Named dump and compress formats available to a run.

    Use build_registry() to construct one from the built-in defaults and
    the FORMATS / COMPRESS configuration sections.
    """

    def __init__(self, formats: Dict[str, str], compress_formats: Dict[str, CompressFormat]):
        self._formats = dict(formats)
        self._compress = dict(compress_formats)

    def resolve_dump_format(self, name: str) -> str:
        """
        Look up a dump command template.

        Raises:
            FormatNotFound: If no such dump format is registered
        """
        try:
            return self._formats[name]
        except KeyError:
            raise FormatNotFound('db', name) from None

    def resolve_compress_format(self, name: str) -> CompressFormat:
        """
        Look up a compression format.

        Raises:
            FormatNotFound: If no such compression format is registered
        """
        try:
            return self._compress[name]
        except KeyError:
            raise FormatNotFound('compression', name) from None

    @property
    def dump_formats(self) -> Dict[str, str]:
        return dict(self._formats)

    @property
    def compress_formats(self) -> Dict[str, CompressFormat]:
        return dict(self._compress)

    @property
    def compress_extensions(self) -> Set[str]:
        return {fmt.ext for fmt in self._compress.values()}


def _valid_dump_template(name: str, template: Optional[str]) -> bool:
    if not template:
        logger.warning(f"Ignoring db format [{name}]: empty command")
        return False

    try:
        fields = template_fields(template)
    except ValueError as e:
        logger.warning(f"Ignoring db format [{name}]: {e}")
        return False

    unknown = fields - DUMP_FIELDS
    if unknown:
        logger.warning(
            f"Ignoring db format [{name}]: unknown placeholders {sorted(unknown)}"
        )
        return False

    # The dump must be written to the dated file
    if 'file' not in fields:
        logger.warning(f"Ignoring db format [{name}]: command must contain placeholder {{file}}")
        return False

    return True


def _valid_compress_entry(name: str, entry: Optional[Dict[str, str]]) -> bool:
    if not entry or not entry.get('ext'):
        logger.warning(f"Ignoring compression format [{name}]: no extension given")
        return False

    cmd = entry.get('cmd')
    if not cmd:
        logger.warning(f"Ignoring compression format [{name}]: no command given")
        return False

    try:
        fields = template_fields(cmd)
    except ValueError as e:
        logger.warning(f"Ignoring compression format [{name}]: {e}")
        return False

    if fields != {COMPRESS_FIELD}:
        logger.warning(
            f"Ignoring compression format [{name}]: command must contain "
            f"exactly one placeholder {{{COMPRESS_FIELD}}}"
        )
        return False

    return True


def build_registry(
    formats: Optional[Dict[str, str]] = None,
    compress_formats: Optional[Dict[str, Dict[str, str]]] = None
) -> FormatRegistry:
    """
    Merge the built-in formats with configured overrides.

    Configured entries replace built-ins of the same name and add new ones.
    Malformed entries are logged and skipped, leaving any prior value of
    that name in place.

    Args:
        formats: Mapping of dump format name to command template
        compress_formats: Mapping of compress format name to a dict with
            'ext' and 'cmd' keys

    Returns:
        FormatRegistry instance
    """
    dump = dict(DEFAULT_FORMATS)
    for name, template in (formats or {}).items():
        if _valid_dump_template(name, template):
            dump[name] = template

    compress = {
        name: CompressFormat(entry['ext'], entry['cmd'])
        for name, entry in DEFAULT_COMPRESS_FORMATS.items()
    }
    for name, entry in (compress_formats or {}).items():
        if _valid_compress_entry(name, entry):
            compress[name] = CompressFormat(entry['ext'], entry['cmd'])

    return FormatRegistry(dump, compress)
