"""
Command-line interface for the notifier.

Provides commands for:
- Starting/stopping the notifier
- Adding/removing/updating notifications
- Checking cron expressions and previewing fire times
- Managing configuration

A running notifier picks up changes to the notifications file on its own;
no restart is needed after add/remove/update.
"""

import argparse
import logging
import os
import signal
import sys
import time
from datetime import datetime
from pathlib import Path

from notifier.config import NotifierConfig, NotificationDetails, LEVELS, DEFAULT_LEVEL
from notifier.cron import parse, upcoming, next_fire_time, CronError, FIELD_TEMPLATE, DAY_OF_WEEK_NUMBERING
from notifier.service import NotifierService, is_notifier_running, get_notifier_info, get_pid_file_path

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = None, verbose: bool = False, level: str = None):
    """Setup logging configuration."""
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # The tick job runs twice a second
    if not verbose:
        logging.getLogger('apscheduler').setLevel(logging.WARNING)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _format_time(value) -> str:
    if value is None:
        return 'never'
    return value.strftime('%Y-%m-%d %H:%M:%S')


def cmd_start(args):
    """Start the notifier in the foreground."""
    config = NotifierConfig(args.config)
    setup_logging(
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose,
        level=config.logging.level
    )

    try:
        service = NotifierService(config_path=args.config, foreground=True)
        logger.info("Running in foreground mode. Press Ctrl+C to stop.")
        service.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Failed to start notifier: {e}", exc_info=args.verbose)
        sys.exit(1)


def cmd_stop(args):
    """Stop a running notifier."""
    setup_logging(verbose=args.verbose)

    running, pid = is_notifier_running()
    if not running:
        logger.warning("Notifier does not appear to be running")
        return

    try:
        logger.info(f"Stopping notifier (PID: {pid})...")
        os.kill(pid, signal.SIGTERM)

        # Wait for process to stop
        for _ in range(10):
            time.sleep(1)
            try:
                os.kill(pid, 0)  # Check if process exists
            except OSError:
                logger.info("Notifier stopped successfully")
                return

        logger.warning("Notifier did not stop gracefully, sending SIGKILL")
        os.kill(pid, signal.SIGKILL)
        pid_file = get_pid_file_path()
        if pid_file.exists():
            pid_file.unlink()

    except OSError as e:
        logger.error(f"Failed to stop notifier: {e}")
        sys.exit(1)


def cmd_status(args):
    """Show notifier status."""
    setup_logging(verbose=args.verbose)

    info = get_notifier_info()
    if not info:
        print("\n  Status:     \033[91m○ Not Running\033[0m")
        print("\n  Start the notifier with: notifier start")
        print()
        return

    print(f"\n  Status:     \033[92m● Running\033[0m")
    print(f"  PID:        {info['pid']}")
    if info.get('started_at'):
        print(f"  Started:    {info['started_at']}")
    if info.get('config_path'):
        print(f"  Config:     {info['config_path']}")
    if info.get('log_file'):
        print(f"  Log file:   {info['log_file']}")
    print(f"  Data Dir:   {info.get('data_dir', 'N/A')}")
    print()


def cmd_list(args):
    """List configured notifications with their next fire times."""
    setup_logging(verbose=args.verbose)

    try:
        config = NotifierConfig(args.config)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    print(f"\n=== Notifications ({len(config.notifications)}) ===\n")
    if not config.notifications:
        print("  No notifications configured.")
        print("  Add one with: notifier add \"Stretch\" --cron \"0 0 * * * * *\"\n")
        return

    now = datetime.now()
    for notification in config.notifications:
        try:
            schedule = parse(notification.cron)
        except CronError as e:
            print(f"✗ {notification.label}")
            print(f"    Cron:  {notification.cron}")
            print(f"    Error: {e}")
        else:
            print(f"✓ {notification.label}")
            print(f"    Cron:  {notification.cron}")
            print(f"    Level: {notification.level}")
            print(f"    Next notification at: {_format_time(schedule.next_after(now))}")
        print()


def cmd_add(args):
    """Add a new notification."""
    setup_logging(verbose=args.verbose)

    try:
        config = NotifierConfig(args.config)
        config.add_notification(NotificationDetails(
            label=args.label,
            cron=args.cron,
            level=args.level
        ))
        config.save()

        logger.info(f"Added notification '{args.label}'")
        logger.info(f"Next notification at: {_format_time(next_fire_time(args.cron))}")

    except Exception as e:
        logger.error(f"Failed to add notification: {e}")
        sys.exit(1)


def cmd_remove(args):
    """Remove a notification."""
    setup_logging(verbose=args.verbose)

    try:
        config = NotifierConfig(args.config)

        if config.remove_notification(args.label):
            config.save()
            logger.info(f"Removed notification '{args.label}'")
        else:
            logger.error(f"Notification '{args.label}' not found")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Failed to remove notification: {e}")
        sys.exit(1)


def cmd_update(args):
    """Update a notification's label, cron expression or level."""
    setup_logging(verbose=args.verbose)

    try:
        config = NotifierConfig(args.config)
        config.update_notification(
            args.label,
            label=args.new_label,
            cron=args.cron,
            level=args.level
        )
        config.save()

        logger.info(f"Updated notification '{args.label}'")

    except Exception as e:
        logger.error(f"Failed to update notification: {e}")
        sys.exit(1)


def cmd_validate(args):
    """Check a cron expression."""
    setup_logging(verbose=args.verbose)

    try:
        schedule = parse(args.cron)
    except CronError as e:
        print(f"✗ {e}")
        print(f"  Expected: {FIELD_TEMPLATE}")
        sys.exit(1)

    print(f"✓ Cron '{args.cron}' is valid")
    for name, value in schedule.fields.items():
        print(f"    {name + ':':<14} {value}")


def cmd_next(args):
    """Preview the next fire times of a cron expression."""
    setup_logging(verbose=args.verbose)

    try:
        schedule = parse(args.cron)
    except CronError as e:
        print(f"✗ {e}")
        sys.exit(1)

    times = upcoming(schedule, datetime.now())
    print(f"\nNext {args.count} fire time(s) for '{args.cron}':\n")
    shown = 0
    for instant in times:
        if shown >= args.count:
            break
        print(f"  {_format_time(instant)}")
        shown += 1
    if not shown:
        print("  (no upcoming matches)")
    print()


def cmd_init(args):
    """Initialize the notifications file."""
    setup_logging(verbose=args.verbose)

    try:
        config = NotifierConfig(args.config, load=False)
        if config.config_path.exists() and not args.force:
            logger.info(f"Configuration already exists at: {config.config_path}")
            return
        config.save()
        logger.info(f"Initialized notifier configuration at: {config.config_path}")

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        sys.exit(1)


def cmd_show_config(args):
    """Show current configuration."""
    setup_logging(verbose=args.verbose)

    try:
        config = NotifierConfig(args.config)

        print(f"\nConfiguration file: {config.config_path}")
        valid = len(config.valid_notifications())
        print(f"\nNotifications: {len(config.notifications)} ({valid} valid)")
        print(f"Day of week: {DAY_OF_WEEK_NUMBERING}")
        print(f"Poll interval: {config.settings.poll_interval}s")
        print(f"Reload interval: {config.settings.reload_interval}s")
        print(f"Queue size: {config.settings.queue_size}")
        print(f"Delivery backend: {config.delivery.backend}")
        print(f"Logging level: {config.logging.level}")
        print(f"Log file: {config.logging.file or '(console only)'}")

        errors = config.validate()
        if errors:
            print(f"\n{len(errors)} problem(s):")
            for error in errors:
                print(f"  - {error}")
        print()

    except Exception as e:
        logger.error(f"Failed to show config: {e}")
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="notifier",
        description="Notifier - show desktop notifications on cron schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Cron format: {FIELD_TEMPLATE}"
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to notifications file (default: ~/.config/notifier.yaml)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Run the notifier in the foreground')
    start_parser.add_argument('--log-file', type=str, help='Log file path')
    start_parser.set_defaults(func=cmd_start)

    # Stop command
    stop_parser = subparsers.add_parser('stop', help='Stop a running notifier')
    stop_parser.set_defaults(func=cmd_stop)

    # Status command
    status_parser = subparsers.add_parser('status', help='Show notifier status')
    status_parser.set_defaults(func=cmd_status)

    # List command
    list_parser = subparsers.add_parser('list', help='List notifications')
    list_parser.set_defaults(func=cmd_list)

    # Add command
    add_parser = subparsers.add_parser('add', help='Add a notification')
    add_parser.add_argument('label', help='Text shown in the notification')
    add_parser.add_argument('--cron', required=True, help=f'Cron expression ({FIELD_TEMPLATE})')
    add_parser.add_argument('--level', choices=LEVELS, default=DEFAULT_LEVEL,
                            help=f'Notification level (default: {DEFAULT_LEVEL})')
    add_parser.set_defaults(func=cmd_add)

    # Remove command
    remove_parser = subparsers.add_parser('remove', help='Remove a notification')
    remove_parser.add_argument('label', help='Label of the notification to remove')
    remove_parser.set_defaults(func=cmd_remove)

    # Update command
    update_parser = subparsers.add_parser('update', help='Update a notification')
    update_parser.add_argument('label', help='Label of the notification to update')
    update_parser.add_argument('--new-label', type=str, help='New label')
    update_parser.add_argument('--cron', type=str, help='New cron expression')
    update_parser.add_argument('--level', choices=LEVELS, help='New level')
    update_parser.set_defaults(func=cmd_update)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Check a cron expression')
    validate_parser.add_argument('cron', help='Cron expression')
    validate_parser.set_defaults(func=cmd_validate)

    # Next command
    next_parser = subparsers.add_parser('next', help='Preview upcoming fire times')
    next_parser.add_argument('cron', help='Cron expression')
    next_parser.add_argument('--count', '-n', type=int, default=5,
                             help='Number of fire times to show (default: 5)')
    next_parser.set_defaults(func=cmd_next)

    # Init command
    init_parser = subparsers.add_parser('init', help='Create an empty notifications file')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')
    init_parser.set_defaults(func=cmd_init)

    # Show config command
    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
