"""
Command-line entry point.

Usage:
    gpg-cloud-backup [--dry-run] [--no-retain] [--config FILE] [--init-config]
                     [--check] [--verbose] [--version]

Exit codes: 0 on success or a passing check, 1 on any fatal error.
"""

import argparse
import logging
import sys
from datetime import datetime
from typing import List, Optional

from gpgbackup import PROJECT_NAME, __version__, configure_logging, shutdown_logging
from gpgbackup.config import default_config_path, load_config, write_starter_config
from gpgbackup.exceptions import BackupError
from gpgbackup.models import DAY_FORMAT, STAMP_FORMAT, RunContext
from gpgbackup.backup.items import safe_filename_component
from gpgbackup.backup.executor import BackupExecutor, log_error

logger = logging.getLogger('gpgbackup.cli')

EXIT_OK = 0
EXIT_FAILURE = 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='gpg-cloud-backup',
        description=f"{PROJECT_NAME}: tar -> gpg encrypt -> upload to a cloud remote, with retention."
    )
    parser.add_argument('--dry-run', '--dryrun', dest='dry_run', action='store_true',
                        help='Do everything except cloud upload and deletion.')
    parser.add_argument('--no-retain', '--no-retention', dest='retain', action='store_false',
                        help='Skip retention (no deletion of old backups).')
    parser.add_argument('--config', metavar='FILE',
                        help='Use specific config file (default: ./gpgbackup.json or $GPGBACKUP_CONFIG).')
    parser.add_argument('--init-config', action='store_true',
                        help="Create a starter config file and exit (won't overwrite).")
    parser.add_argument('--check', action='store_true',
                        help='Only check deps/config/GPG/remote and exit.')
    parser.add_argument('--verbose', action='store_true',
                        help='Debug logging and transfer progress (good for manual runs).')
    parser.add_argument('--version', action='version', version=__version__)
    return parser.parse_args(argv)


def build_context(config, args: argparse.Namespace, now: Optional[datetime] = None) -> RunContext:
    started_at = now or datetime.now()
    day = started_at.strftime(DAY_FORMAT)
    stamp = started_at.strftime(STAMP_FORMAT)
    work_dir = config.backup_root_path / day
    log_file = work_dir / f"{safe_filename_component(config.label)}_cloud_backup_{stamp}.log"

    return RunContext(
        config=config,
        started_at=started_at,
        work_dir=work_dir,
        log_file=log_file,
        dry_run=args.dry_run,
        retain=args.retain,
        verbose=args.verbose
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config_path = args.config or default_config_path()

    # Console-only logging until the run log file is known
    handlers = configure_logging(verbose=args.verbose)
    try:
        if args.init_config:
            write_starter_config(config_path)
            return EXIT_OK

        try:
            config = load_config(config_path)
        except BackupError as e:
            log_error(e)
            return EXIT_FAILURE
    finally:
        shutdown_logging(handlers)

    context = build_context(config, args)

    handlers = configure_logging(log_file=str(context.log_file), verbose=args.verbose)
    try:
        logger.info(f"=== {PROJECT_NAME} {__version__} ===")
        logger.info(f"Host     : {config.host_tag}")
        logger.info(f"Work dir : {context.work_dir}")
        logger.info(f"Log file : {context.log_file}")
        logger.info(f"Config   : {config_path}")
        if args.dry_run:
            logger.info("Mode     : dry-run")

        executor = BackupExecutor(context)

        if args.check:
            return EXIT_OK if executor.check() else EXIT_FAILURE

        executor.run()
        return EXIT_OK

    except BackupError as e:
        log_error(e)
        return EXIT_FAILURE
    except Exception as e:
        logger.exception(f"Backup failed: {e}")
        return EXIT_FAILURE
    finally:
        shutdown_logging(handlers)


if __name__ == '__main__':
    sys.exit(main())
