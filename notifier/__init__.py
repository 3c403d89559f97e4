"""
Notifier

Shows desktop notifications on cron schedules.

Main Components:
- Cron parsing and schedule queries: parse, validate, upcoming
- JobScheduler: job registry and tick engine
- NotifierConfig: YAML notifications file
- NotifierService: polling loop, config reload, notification delivery
"""

from notifier.cron import (
    CronSchedule,
    CronError,
    MalformedFieldCountError,
    InvalidFieldGrammarError,
    check,
    validate,
    parse,
    upcoming,
    next_fire_time,
)
from notifier.jobs import Job, JobScheduler
from notifier.config import NotifierConfig, NotificationDetails, ConfigError
from notifier.delivery import Notification, NotificationSender, NotificationDispatcher, DeliveryError
from notifier.service import NotifierService

__version__ = "0.1.0"

__all__ = [
    # Cron
    "CronSchedule",
    "CronError",
    "MalformedFieldCountError",
    "InvalidFieldGrammarError",
    "check",
    "validate",
    "parse",
    "upcoming",
    "next_fire_time",
    # Scheduling
    "Job",
    "JobScheduler",
    # Configuration
    "NotifierConfig",
    "NotificationDetails",
    "ConfigError",
    # Delivery
    "Notification",
    "NotificationSender",
    "NotificationDispatcher",
    "DeliveryError",
    # Service
    "NotifierService",
]
