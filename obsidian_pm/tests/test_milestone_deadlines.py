"""
Deadline notification generator.

Covers checkpoint matching, severity, per-day idempotence, owner scoping and
partial failure accounting.
"""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from obsidian_pm.features.milestones.deadlines import (
    check_milestone_deadlines,
    checkpoint_label,
    deadline_message,
    project_link,
)
from obsidian_pm.features.notifications.service import list_notifications
from obsidian_pm.features.projects.service import add_milestone, create_project, set_milestone_status
from obsidian_pm.models.notification import NotificationKind
from obsidian_pm.models.project import MilestoneStatus


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
TODAY = date(2025, 6, 1)


@pytest.fixture
def project():
    return create_project("user_a", "Thesis", project_id="proj_1")


@pytest.mark.parametrize(
    "days,label",
    [(365, "1 Year"), (180, "6 Months"), (90, "3 Months"), (30, "1 Month"), (7, "1 Week"), (1, "1 Day"), (0, "TODAY")],
)
def test_checkpoint_labels(days, label):
    assert checkpoint_label(days) == label


@pytest.mark.parametrize("days", [-1, 2, 3, 6, 8, 29, 31, 364, 366])
def test_non_checkpoint_days(days):
    assert checkpoint_label(days) is None


def test_one_week_out_creates_warning(project):
    add_milestone(project.id, "Draft chapter 2", TODAY + timedelta(days=7))

    result = check_milestone_deadlines("user_a", now=NOW)

    assert result.created == 1
    assert result.failed == 0
    assert result.message == "Generated 1 deadline alerts."

    [n] = list_notifications("user_a")
    assert n.title == "Milestone Due 1 Week"
    assert n.kind == NotificationKind.WARNING
    assert n.link == "/dashboard/projects/proj_1"
    assert n.message == '"Draft chapter 2" for Thesis is due on June 8, 2025.'


def test_three_days_out_creates_nothing(project):
    add_milestone(project.id, "Review", TODAY + timedelta(days=3))

    result = check_milestone_deadlines("user_a", now=NOW)

    assert result.created == 0
    assert result.message == "No milestones due at tracking intervals (1y, 6m, 3m, 1m, 7d, 1d, today)."
    assert list_notifications("user_a") == []


def test_one_month_out_is_info(project):
    add_milestone(project.id, "Submit abstract", TODAY + timedelta(days=30))

    check_milestone_deadlines("user_a", now=NOW)

    [n] = list_notifications("user_a")
    assert n.title == "Milestone Due 1 Month"
    assert n.kind == NotificationKind.INFO


def test_repeated_runs_same_day_are_idempotent(project):
    add_milestone(project.id, "Draft chapter 2", TODAY + timedelta(days=7))

    first = check_milestone_deadlines("user_a", now=NOW)
    second = check_milestone_deadlines("user_a", now=NOW + timedelta(hours=5))

    assert first.created == 1
    assert second.created == 0
    assert second.skipped == 1
    assert len(list_notifications("user_a")) == 1


def test_due_today_then_overdue(project):
    add_milestone(project.id, "Defense", TODAY)

    result = check_milestone_deadlines("user_a", now=NOW)
    assert result.created == 1
    [n] = list_notifications("user_a")
    assert n.title == "Milestone Due TODAY"
    assert n.kind == NotificationKind.WARNING
    assert n.message == '"Defense" for Thesis is due TODAY.'

    # Next day the milestone is overdue: no checkpoint applies
    tomorrow = check_milestone_deadlines("user_a", now=NOW + timedelta(days=1))
    assert tomorrow.created == 0
    assert len(list_notifications("user_a")) == 1


def test_other_users_milestones_are_ignored(project):
    other = create_project("user_b", "Other thesis", project_id="proj_2")
    add_milestone(other.id, "Not mine", TODAY + timedelta(days=7))

    result = check_milestone_deadlines("user_a", now=NOW)
    assert result.message == "No pending milestones"
    assert list_notifications("user_a") == []
    assert list_notifications("user_b") == []


def test_same_due_date_for_two_users_stays_scoped(project):
    other = create_project("user_b", "Other thesis", project_id="proj_2")
    add_milestone(project.id, "Mine", TODAY + timedelta(days=7))
    add_milestone(other.id, "Theirs", TODAY + timedelta(days=7))

    assert check_milestone_deadlines("user_a", now=NOW).created == 1
    assert check_milestone_deadlines("user_b", now=NOW).created == 1

    [mine] = list_notifications("user_a")
    [theirs] = list_notifications("user_b")
    assert mine.link == "/dashboard/projects/proj_1"
    assert theirs.link == "/dashboard/projects/proj_2"
    assert "Mine" in mine.message
    assert "Theirs" in theirs.message


def test_no_projects():
    result = check_milestone_deadlines("user_empty", now=NOW)
    assert result.created == 0
    assert result.message == "No projects found"


def test_missing_due_date_and_done_milestones_are_skipped(project):
    add_milestone(project.id, "Someday", None)
    done = add_milestone(project.id, "Finished", TODAY + timedelta(days=7))
    set_milestone_status(done.id, MilestoneStatus.DONE)

    result = check_milestone_deadlines("user_a", now=NOW)
    assert result.created == 0
    assert list_notifications("user_a") == []


def test_failures_are_counted_and_processing_continues(project, caplog):
    second = create_project("user_a", "Paper", project_id="proj_3")
    add_milestone(project.id, "First", TODAY + timedelta(days=1))
    add_milestone(second.id, "Second", TODAY + timedelta(days=1))

    from obsidian_pm.features.milestones import deadlines

    real_create = deadlines.create_notification
    calls = []

    def flaky(user_id, kind, title, message, link=None, now=None):
        calls.append(link)
        if len(calls) == 1:
            raise RuntimeError("db hiccup")
        return real_create(user_id, kind, title, message, link=link, now=now)

    with patch.object(deadlines, "create_notification", side_effect=flaky):
        with caplog.at_level("WARNING", logger="obsidian"):
            result = check_milestone_deadlines("user_a", now=NOW)

    assert result.failed == 1
    assert result.created == 1
    assert len(calls) == 2
    assert len(list_notifications("user_a")) == 1
    [summary] = [r for r in caplog.records if r.getMessage() == "deadline.check_incomplete"]
    assert summary.failed_count == "1"
    assert summary.created_count == "1"


def test_deadline_message_formats_date():
    from obsidian_pm.models.project import Milestone

    milestone = Milestone(id="m1", project_id="p1", title="Ship", due_date=date(2026, 1, 5), status=MilestoneStatus.PENDING)
    assert deadline_message(milestone, "Launch", 7) == '"Ship" for Launch is due on January 5, 2026.'
    assert project_link("p1") == "/dashboard/projects/p1"
