"""
obsidian_pm/features/projects/service.py

Read surface over projects and milestones used by the deadline generator,
plus the small write helpers the project screens (and tests) use.
"""

from datetime import date
from typing import Iterable, List, Optional
from uuid import uuid4
from sqlalchemy import select, insert, update

from obsidian_pm.core.clock import utc_now
from obsidian_pm.core.database import get_db_session, projects, project_milestones
from obsidian_pm.models.project import Milestone, MilestoneStatus, Project


def list_user_projects(user_id: str) -> List[Project]:
    with get_db_session() as session:
        rows = session.execute(
            select(projects).where(projects.c.user_id == user_id).order_by(projects.c.created_at)
        ).all()
        return [
            Project(id=row.id, user_id=row.user_id, name=row.name, created_at=row.created_at)
            for row in rows
        ]


def list_pending_milestones(project_ids: Iterable[str]) -> List[Milestone]:
    ids = list(project_ids)
    if not ids:
        return []
    with get_db_session() as session:
        rows = session.execute(
            select(project_milestones)
            .where(project_milestones.c.project_id.in_(ids))
            .where(project_milestones.c.status == MilestoneStatus.PENDING.value)
            .order_by(project_milestones.c.due_date, project_milestones.c.id)
        ).all()
        return [
            Milestone(
                id=row.id,
                project_id=row.project_id,
                title=row.title,
                due_date=row.due_date,
                status=MilestoneStatus(row.status),
            )
            for row in rows
        ]


def create_project(user_id: str, name: str, project_id: Optional[str] = None) -> Project:
    project_id = project_id or str(uuid4())
    now = utc_now()
    with get_db_session() as session:
        session.execute(
            insert(projects).values(id=project_id, user_id=user_id, name=name, created_at=now)
        )
    return Project(id=project_id, user_id=user_id, name=name, created_at=now)


def add_milestone(
    project_id: str,
    title: str,
    due_date: Optional[date],
    status: MilestoneStatus = MilestoneStatus.PENDING,
    milestone_id: Optional[str] = None,
) -> Milestone:
    milestone_id = milestone_id or str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(project_milestones).values(
                id=milestone_id,
                project_id=project_id,
                title=title,
                due_date=due_date,
                status=MilestoneStatus(status).value,
                created_at=utc_now(),
            )
        )
    return Milestone(id=milestone_id, project_id=project_id, title=title, due_date=due_date, status=status)


def set_milestone_status(milestone_id: str, status: MilestoneStatus) -> None:
    with get_db_session() as session:
        session.execute(
            update(project_milestones)
            .where(project_milestones.c.id == milestone_id)
            .values(status=MilestoneStatus(status).value)
        )
