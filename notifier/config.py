"""
Notifier configuration management.

Handles loading, saving, and validating the notifications file. The file
is YAML; each entry pairs a label with a seven-field cron expression:

    notifications:
      - label: Stand up and stretch
        cron: "0 0 * * * * *"
        level: Info

Optional `settings`, `delivery` and `logging` sections tune the service.

Numeric weekdays use standard cron numbering: 0 and 7 are Sunday, 1 is
Monday. Older notifier files numbered Sunday as 1, so numeric weekday
entries copied from them fire one day later; weekday names (mon-fri) are
unaffected.
"""

import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, List, Any, Dict

import yaml
from dotenv import load_dotenv

from notifier.cron import check
from notifier.delivery import BACKENDS

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = "Info"
LEVELS = ("Info", "Warning", "Critical")


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or written."""
    pass


@dataclass
class NotificationDetails:
    """A single configured notification."""
    label: str
    cron: str
    level: str = DEFAULT_LEVEL


@dataclass
class SchedulerSettings:
    """Polling cadence and queue sizing."""
    poll_interval: float = 0.5  # seconds between ticks
    reload_interval: float = 10  # seconds between config file checks
    queue_size: int = 100  # pending notifications before dropping


@dataclass
class DeliveryConfig:
    """How notifications are shown."""
    backend: str = "auto"  # 'auto', 'notify-send', 'osascript', 'command', 'log'
    timeout: int = 10  # seconds
    app_name: str = "Notifier"
    command: Optional[str] = None  # template for the 'command' backend


def _get_default_log_file() -> Optional[str]:
    """Get default log file path from environment, if configured."""
    if os.environ.get('NOTIFIER_LOG_DIR'):
        return str(Path(os.environ['NOTIFIER_LOG_DIR']).expanduser() / "notifier.log")
    return None


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None  # Set from NOTIFIER_LOG_DIR in __post_init__

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


def get_config_path() -> Path:
    """
    Resolve the notifications file path.

    Priority:
    1. NOTIFIER_CONFIG_PATH environment variable
    2. Default: ~/.config/notifier.yaml
    """
    if os.environ.get('NOTIFIER_CONFIG_PATH'):
        return Path(os.environ['NOTIFIER_CONFIG_PATH']).expanduser()
    return Path.home() / ".config" / "notifier.yaml"


def _section(data: Dict[str, Any], name: str, cls):
    raw = data.get(name)
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigError(f"Invalid '{name}' section: {e}") from e


class NotifierConfig:
    """
    Notifier configuration manager.

    Loads and manages the notifications file, with support for
    validation and defaults. A missing or empty file is an empty
    configuration.
    """

    def __init__(self, config_path: Optional[str] = None, load: bool = True):
        """
        Initialize notifier configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
            load: If False, start from defaults without reading an existing file
        """
        self.config_path = Path(config_path).expanduser() if config_path else get_config_path()
        self.notifications: List[NotificationDetails] = []
        self.settings: SchedulerSettings = SchedulerSettings()
        self.delivery: DeliveryConfig = DeliveryConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if not load:
            return
        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, using defaults")

    def load(self):
        """Load configuration from the YAML file."""
        try:
            content = self.config_path.read_text()
        except OSError as e:
            raise ConfigError(f"Could not read {self.config_path}: {e}") from e

        if not content.strip():
            data = {}
        else:
            try:
                data = yaml.safe_load(content) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Top level of {self.config_path} must be a mapping")

        entries = data.get('notifications') or []
        if not isinstance(entries, list):
            raise ConfigError("'notifications' must be a list")

        notifications = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or 'label' not in entry or 'cron' not in entry:
                raise ConfigError(
                    f"Notification #{index + 1} needs both 'label' and 'cron'"
                )
            notifications.append(NotificationDetails(
                label=str(entry['label']),
                cron=str(entry['cron']),
                level=str(entry.get('level') or DEFAULT_LEVEL)
            ))

        self.notifications = notifications
        self.settings = _section(data, 'settings', SchedulerSettings)
        self.delivery = _section(data, 'delivery', DeliveryConfig)
        self.logging = _section(data, 'logging', LoggingConfig)

        logger.info(f"Loaded {len(self.notifications)} notification(s) from {self.config_path}")

    def save(self):
        """Save configuration to the YAML file."""
        data = {
            'notifications': [asdict(n) for n in self.notifications],
            'settings': asdict(self.settings),
            'delivery': asdict(self.delivery),
            'logging': asdict(self.logging)
        }

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        except OSError as e:
            raise ConfigError(f"Could not save to {self.config_path}: {e}") from e

        logger.info(f"Saved configuration to {self.config_path}")

    def add_notification(self, notification: NotificationDetails):
        """
        Add a notification after checking its cron expression.

        Raises:
            ValueError: If the label is empty or the cron expression is invalid
        """
        if not notification.label.strip():
            raise ValueError("Notification label cannot be empty")
        error = check(notification.cron)
        if error:
            raise ValueError(error)

        self.notifications.append(notification)
        logger.info(f"Added notification: {notification.label}")

    def remove_notification(self, label: str) -> bool:
        """
        Remove notifications by label.

        Returns:
            True if at least one notification was removed, False if not found
        """
        initial_len = len(self.notifications)
        self.notifications = [n for n in self.notifications if n.label != label]

        if len(self.notifications) < initial_len:
            logger.info(f"Removed notification: {label}")
            return True
        return False

    def get_notification(self, label: str) -> Optional[NotificationDetails]:
        """Get the first notification with a label."""
        for notification in self.notifications:
            if notification.label == label:
                return notification
        return None

    def update_notification(self, name: str, **kwargs):
        """
        Update a notification in place.

        Args:
            name: Current label of the notification
            **kwargs: Fields to change (label, cron, level); None values are ignored

        Raises:
            ValueError: If the notification is missing or the new cron is invalid
        """
        notification = self.get_notification(name)
        if not notification:
            raise ValueError(f"Notification '{name}' not found")

        if kwargs.get('label') is not None and not kwargs['label'].strip():
            raise ValueError("Notification label cannot be empty")
        if kwargs.get('cron') is not None:
            error = check(kwargs['cron'])
            if error:
                raise ValueError(error)

        for key, value in kwargs.items():
            if value is not None and hasattr(notification, key):
                setattr(notification, key, value)

        logger.info(f"Updated notification: {name}")

    def valid_notifications(self) -> List[NotificationDetails]:
        """Notifications whose cron expressions pass validation."""
        return [n for n in self.notifications if check(n.cron) is None]

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        for index, notification in enumerate(self.notifications, start=1):
            name = notification.label or f"#{index}"
            if not notification.label.strip():
                errors.append(f"Notification #{index}: 'label' cannot be empty")

            error = check(notification.cron)
            if error:
                errors.append(f"Notification {name}: {error}")

            if notification.level not in LEVELS:
                errors.append(
                    f"Notification {name}: unknown level '{notification.level}' "
                    f"(expected one of {', '.join(LEVELS)})"
                )

        if self.settings.poll_interval <= 0:
            errors.append("settings: 'poll_interval' must be positive")
        if self.settings.reload_interval <= 0:
            errors.append("settings: 'reload_interval' must be positive")
        if self.settings.queue_size <= 0:
            errors.append("settings: 'queue_size' must be positive")
        if self.delivery.backend not in BACKENDS:
            errors.append(
                f"delivery: unknown backend '{self.delivery.backend}' "
                f"(expected one of {', '.join(BACKENDS)})"
            )
        if self.delivery.timeout <= 0:
            errors.append("delivery: 'timeout' must be positive")
        if self.delivery.backend == 'command' and not self.delivery.command:
            errors.append("delivery: 'command' backend requires 'command'")

        return errors

    def __repr__(self):
        return f"NotifierConfig(notifications={len(self.notifications)}, path={self.config_path})"
