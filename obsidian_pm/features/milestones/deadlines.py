"""
obsidian_pm/features/milestones/deadlines.py

Deadline notification generator.

Scans a user's pending milestones and raises one alert per
(milestone, checkpoint, calendar day). There is no cursor: every run
recomputes from scratch, and milestones that drift past a checkpoint on a day
the generator did not run are skipped for that checkpoint.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from obsidian_pm.core.clock import days_between, local_today, normalize_now, start_of_day_utc
from obsidian_pm.core.logging import log_event
from obsidian_pm.features.notifications.service import create_notification, find_recent_notification
from obsidian_pm.features.projects.service import list_pending_milestones, list_user_projects
from obsidian_pm.models.notification import NotificationKind
from obsidian_pm.models.project import Milestone


# Lead times in days-before-due, with their (English-only) labels
CHECKPOINTS: Tuple[Tuple[int, str], ...] = (
    (365, "1 Year"),
    (180, "6 Months"),
    (90, "3 Months"),
    (30, "1 Month"),
    (7, "1 Week"),
    (1, "1 Day"),
    (0, "TODAY"),
)
CHECKPOINT_LABELS: Dict[int, str] = dict(CHECKPOINTS)

WARNING_THRESHOLD_DAYS = 7


@dataclass(frozen=True)
class DeadlineCheckResult:
    created: int
    skipped: int
    failed: int
    message: str


def checkpoint_label(diff_days: int) -> Optional[str]:
    """Label for a checkpoint, or None when `diff_days` is not one."""
    return CHECKPOINT_LABELS.get(diff_days)


def deadline_title(diff_days: int) -> str:
    return f"Milestone Due {CHECKPOINT_LABELS[diff_days]}"


def project_link(project_id: str) -> str:
    return f"/dashboard/projects/{project_id}"


def _format_due(due: date) -> str:
    return f"{due:%B} {due.day}, {due.year}"


def deadline_message(milestone: Milestone, project_name: str, diff_days: int) -> str:
    when = "TODAY" if diff_days == 0 else f"on {_format_due(milestone.due_date)}"
    return f'"{milestone.title}" for {project_name} is due {when}.'


def check_milestone_deadlines(user_id: str, now: Optional[datetime] = None) -> DeadlineCheckResult:
    """
    Create deadline alerts for the user's milestones that sit exactly on a
    checkpoint today.

    Safe to call any number of times per day. A failure on one milestone is
    logged and counted; the remaining milestones are still processed.
    """
    current = normalize_now(now)
    today = local_today(current)
    day_start = start_of_day_utc(today)

    user_projects = list_user_projects(user_id)
    if not user_projects:
        return DeadlineCheckResult(created=0, skipped=0, failed=0, message="No projects found")

    names = {p.id: p.name for p in user_projects}
    milestones = list_pending_milestones(names.keys())
    if not milestones:
        return DeadlineCheckResult(created=0, skipped=0, failed=0, message="No pending milestones")

    created = skipped = failed = 0

    for milestone in milestones:
        if milestone.due_date is None:
            continue

        diff_days = days_between(today, milestone.due_date)
        if checkpoint_label(diff_days) is None:
            continue

        title = deadline_title(diff_days)
        link = project_link(milestone.project_id)
        try:
            if find_recent_notification(user_id, title, link, since=day_start):
                skipped += 1
                continue

            notification = create_notification(
                user_id,
                NotificationKind.WARNING if diff_days <= WARNING_THRESHOLD_DAYS else NotificationKind.INFO,
                title,
                deadline_message(milestone, names.get(milestone.project_id, "Unknown Project"), diff_days),
                link=link,
                now=current,
            )
        except Exception as e:
            failed += 1
            log_event(
                "error",
                "deadline.notify_failed",
                request_id=None,
                user_id=user_id,
                error_code="deadline_notify_failed",
                extra={"milestone_id": milestone.id, "diff_days": diff_days, "error": e},
                exc_info=True,
            )
            continue

        if notification is None:
            skipped += 1
        else:
            created += 1

    if failed:
        log_event(
            "warning",
            "deadline.check_incomplete",
            request_id=None,
            user_id=user_id,
            extra={"created_count": created, "skipped_count": skipped, "failed_count": failed},
        )

    if created == 0:
        message = "No milestones due at tracking intervals (1y, 6m, 3m, 1m, 7d, 1d, today)."
    else:
        message = f"Generated {created} deadline alerts."
    return DeadlineCheckResult(created=created, skipped=skipped, failed=failed, message=message)
