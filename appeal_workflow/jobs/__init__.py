"""Scheduled jobs for appeal monitoring."""

from .overdue_cron import run_overdue_job, send_alert

__all__ = ["run_overdue_job", "send_alert"]
