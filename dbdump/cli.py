"""Command-line entry point."""

import sys
import logging
import argparse

from dbdump import __version__, configure_logging
from dbdump.config import Config, ConfigError, find_config_file, load_config
from dbdump.backup.executor import LockError, execute_backup
from dbdump.scheduler import init_scheduler, start_scheduler


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dbdump',
        description='Dump site databases, compress the dumps and copy them to remote servers.'
    )
    parser.add_argument(
        '-c', '--config',
        help='configuration file (default: search for .dbdump.ini or dbdump.ini '
             'in ., the program directory and ~)'
    )
    parser.add_argument(
        '-f', '--force',
        action='store_true',
        help="recreate today's backup files even if they already exist"
    )
    parser.add_argument(
        '-s', '--schedule',
        metavar='CRON',
        help="run on a crontab schedule (e.g. '30 2 * * *') instead of once"
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='run once even if LOCAL.SCHEDULE is set'
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        help='log at DEBUG level'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    debug = args.debug or Config.DEBUG

    # Console only until the backup root is known
    configure_logging(debug=debug)

    try:
        config_path = args.config or find_config_file()
        config = load_config(config_path)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    configure_logging(config.local.root, debug=debug)

    force = True if args.force else None
    schedule = None if args.once else (args.schedule or config.local.schedule)

    if schedule:
        try:
            init_scheduler(schedule, config_path=config_path, force=force)
        except ConfigError as e:
            logger.error(str(e))
            return 1
        start_scheduler()
        return 0

    try:
        result = execute_backup(config, force=force)
    except LockError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Backup finished: {result}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
