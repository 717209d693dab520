"""Scheduler host"""
from .automation_scheduler import AutomationScheduler, get_scheduler, start_scheduler, stop_scheduler

__all__ = ["AutomationScheduler", "get_scheduler", "start_scheduler", "stop_scheduler"]
