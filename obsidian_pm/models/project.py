"""
obsidian_pm/models/project.py

Projects and their dated milestones (schedule items).
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"


class Project(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    name: str
    created_at: Optional[datetime] = None


class Milestone(BaseModel):
    """A schedule item. Only pending milestones with a due date are tracked."""
    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    title: str
    due_date: Optional[date] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
