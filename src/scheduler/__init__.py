"""Reminder scheduler - daily sweep over time-crossing events."""

from .reminders import ReminderScheduler, SweepResult

__all__ = ["ReminderScheduler", "SweepResult"]
