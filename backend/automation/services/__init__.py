"""Service modules - Business logic layer"""
from .rule_service import RuleService
from .schedule_service import ScheduleService
from .notification_service import WebhookNotificationDispatcher

__all__ = [
    "RuleService",
    "ScheduleService",
    "WebhookNotificationDispatcher",
]
