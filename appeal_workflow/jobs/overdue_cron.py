"""
Overdue Cron Job: Hourly appeal SLA monitoring.

This module runs as a scheduled job (via cron, Kubernetes CronJob, or
similar) to queue reminders for late appeals and deliver pending
notifications. Appeals are never advanced by this job.

Typical cron schedule: 0 * * * * (hourly)
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx

from ..core.config import get_settings
from ..core.database import build_engine, build_session_factory
from ..services.appeal_monitor import AppealMonitor, MonitorConfig
from ..services.gateways import SqlRoleDirectory
from ..services.notification_service import NotificationService, WebhookConfig


logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    webhook_url: str | None = None,
) -> None:
    """
    Send an alert when the cron job fails.

    Always logs; also posts to the alerts webhook when one is configured.
    """
    log_message = f"[CRON ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    webhook_url = webhook_url or get_settings().alerts_webhook_url
    if not webhook_url:
        return

    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "campus-appeals-cron",
        "details": details or {},
    }

    try:
        async with httpx.AsyncClient() as client:
            await client.post(webhook_url, json=payload, timeout=10)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook alert: {e}")


async def run_overdue_job(
    database_url: str,
    monitor_config: MonitorConfig | None = None,
    webhook_config: WebhookConfig | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Main entry point for the overdue cron job.

    This function:
    1. Scans open appeals for outer-deadline and stage SLA breaches
    2. Queues reminder notifications for the responsible reviewers
    3. Sends pending notifications
    4. Logs results

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting overdue job at {start_time.isoformat()}")

    engine = build_engine(database_url)
    session_factory = build_session_factory(engine)

    results = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "open_appeals": 0,
        "overdue_count": 0,
        "stage_overdue_count": 0,
        "approaching_count": 0,
        "notifications_generated": 0,
        "notifications_sent": 0,
        "notifications_failed": 0,
        "errors": [],
    }

    try:
        # Step 1: Scan and queue reminders
        async with session_factory() as session:
            async with session.begin():
                monitor = AppealMonitor(
                    session,
                    SqlRoleDirectory(session_factory),
                    config=monitor_config or MonitorConfig(),
                )

                stats = await monitor.get_monitor_stats()
                results["open_appeals"] = stats.open_appeals
                results["overdue_count"] = stats.overdue
                results["stage_overdue_count"] = stats.stage_overdue
                results["approaching_count"] = stats.approaching

                logger.info(
                    f"Open appeals: {stats.open_appeals} ({stats.overdue} overdue, "
                    f"{stats.stage_overdue} past stage SLA, {stats.approaching} approaching)"
                )

                if dry_run:
                    flagged = await monitor.scan_open_appeals()
                    for item in flagged:
                        logger.info(
                            f"[DRY RUN] Would remind about appeal {item.appeal_id} "
                            f"at stage {item.current_stage}"
                        )
                else:
                    batch = await monitor.generate_reminder_notifications()
                    results["notifications_generated"] = len(batch.notifications)
                    results["errors"].extend(batch.errors)

                    logger.info(
                        f"Generated {len(batch.notifications)} notifications "
                        f"for {batch.appeals_processed} appeals"
                    )

        # Step 2: Send pending notifications (in separate transaction)
        if not dry_run:
            async with session_factory() as session:
                async with session.begin():
                    notification_service = NotificationService(
                        session,
                        webhook_config=webhook_config,
                    )

                    sent, failed, errors = await notification_service.process_pending_notifications()
                    results["notifications_sent"] = sent
                    results["notifications_failed"] = failed
                    results["errors"].extend(errors)

                    logger.info(f"Sent {sent} notifications, {failed} failed")

    except Exception as e:
        error_msg = f"Overdue job failed: {str(e)}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            title="Appeal Overdue Job Failed",
            message="The appeal SLA monitoring job crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
                "overdue_before_crash": results["overdue_count"],
            },
        )
        raise

    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Overdue job completed in {results['duration_seconds']:.2f}s: "
        f"{results['overdue_count']} overdue, {results['stage_overdue_count']} past stage SLA, "
        f"{results['notifications_sent']} notifications sent"
    )

    if results["notifications_failed"] > 0:
        await send_alert(
            title="Overdue Job Completed with Warnings",
            message=f"The overdue job completed but {results['notifications_failed']} notifications failed to send.",
            severity="warning",
            details={
                "notifications_sent": results["notifications_sent"],
                "notifications_failed": results["notifications_failed"],
                "errors": results["errors"][:5],
            },
        )

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the overdue job."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the appeal overdue monitoring job")
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Database connection string",
    )
    parser.add_argument(
        "--cooldown-hours",
        type=int,
        default=settings.reminder_cooldown_hours,
        help="Minimum hours between reminders for the same appeal",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log what would be done without making changes",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_overdue_job(
            database_url=args.database_url,
            monitor_config=MonitorConfig(reminder_cooldown_hours=args.cooldown_hours),
            webhook_config=WebhookConfig(url=settings.notification_webhook_url),
            dry_run=args.dry_run,
        ))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
