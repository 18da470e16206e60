"""Pydantic schemas shared across the API.

Stored documents use camelCase keys; models expose snake_case attributes
with camelCase aliases and are dumped ``by_alias`` before storage.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Collection(str, Enum):
    USERS = "users"
    CHILDREN = "children"
    JOURNEYS = "journeys"
    ADVENTURES = "adventures"
    EVENTS = "events"
    AI_STORIES = "ai_stories"


class WinType(str, Enum):
    TRIED_BEST = "tried-best"
    NO_FRUSTRATION = "no-frustration"
    LAUGHED_ABOUT_IT = "laughed-about-it"
    MADE_PROGRESS = "made-progress"
    KEPT_GOING = "kept-going"
    CUSTOM = "custom"


class SkillCategory(str, Enum):
    SELF_CARE = "self-care"
    ACADEMIC = "academic"
    SOCIAL = "social"
    EMOTIONAL = "emotional"
    PHYSICAL = "physical"
    CREATIVE = "creative"
    LIFE_SKILLS = "life-skills"
    TECHNOLOGY = "technology"
    CUSTOM = "custom"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UserProfile(_Document):
    uid: str
    email: str
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    created_at: datetime = Field(..., alias="createdAt")


class RegisterUserPayload(_Document):
    email: str
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")


class Child(_Document):
    id: str
    family_id: str = Field(..., alias="familyId")
    name: str
    age: int
    diagnosis: str
    strengths: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)
    medications: Optional[str] = None
    allergies: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class CreateChildPayload(_Document):
    name: str
    age: int = Field(..., strict=True)
    diagnosis: str
    strengths: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)
    medications: Optional[str] = None
    allergies: Optional[str] = None


class UpdateChildPayload(_Document):
    name: Optional[str] = None
    age: Optional[int] = Field(default=None, strict=True)
    diagnosis: Optional[str] = None
    strengths: Optional[List[str]] = None
    challenges: Optional[List[str]] = None
    medications: Optional[str] = None
    allergies: Optional[str] = None


class SkillData(_Document):
    id: str
    name: str
    category: SkillCategory
    difficulty: Difficulty
    estimated_days: int = Field(..., alias="estimatedDays")
    created_at: datetime = Field(..., alias="createdAt")


class CreateSkillForm(_Document):
    name: str
    category: SkillCategory
    difficulty: Difficulty
    estimated_days: int = Field(..., alias="estimatedDays", ge=1, strict=True)


class JourneyProgress(_Document):
    adventure_count: int = Field(..., alias="adventureCount")
    last_updated: datetime = Field(..., alias="lastUpdated")


class Journey(_Document):
    id: str
    child_id: str = Field(..., alias="childId")
    skill_data: SkillData = Field(..., alias="skillData")
    progress: JourneyProgress
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class Adventure(_Document):
    id: str
    child_id: str = Field(..., alias="childId")
    skill_id: str = Field(..., alias="skillId")
    text: str
    win_type: WinType = Field(..., alias="winType")
    photo_url: Optional[str] = Field(default=None, alias="photoUrl")
    created_at: datetime = Field(..., alias="createdAt")


class CreateAdventureForm(_Document):
    text: str
    # Plain str so an unknown win type reaches the collection rules and is
    # reported like every other structural failure.
    win_type: str = Field(..., alias="winType")
    photo_url: Optional[str] = Field(default=None, alias="photoUrl")


class AdventureLogResult(_Document):
    adventure: Adventure
    progress: JourneyProgress


class SubTask(_Document):
    task_id: str = Field(..., alias="taskId")
    order: int
    description: str
    duration_minutes: int = Field(default=0, alias="durationMinutes", ge=0)
    is_complete: bool = Field(default=False, alias="isComplete")


class ScheduleEvent(_Document):
    id: str
    family_id: str = Field(..., alias="familyId")
    created_by: str = Field(..., alias="createdBy")
    title: str
    category: str
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    child_ids: List[str] = Field(default_factory=list, alias="childIds")
    is_recurring: bool = Field(default=False, alias="isRecurring")
    sub_tasks: List[SubTask] = Field(default_factory=list, alias="subTasks")


class CreateEventPayload(_Document):
    title: str
    category: str = "General"
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    child_ids: List[str] = Field(default_factory=list, alias="childIds")
    is_recurring: bool = Field(default=False, alias="isRecurring")
    sub_tasks: List[SubTask] = Field(default_factory=list, alias="subTasks")


class UpdateEventPayload(_Document):
    title: Optional[str] = None
    category: Optional[str] = None
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    child_ids: Optional[List[str]] = Field(default=None, alias="childIds")
    is_recurring: Optional[bool] = Field(default=None, alias="isRecurring")
    sub_tasks: Optional[List[SubTask]] = Field(default=None, alias="subTasks")


class AIStory(_Document):
    id: str
    child_id: str = Field(..., alias="childId")
    skill_id: Optional[str] = Field(default=None, alias="skillId")
    title: str
    content: str
    is_placeholder: bool = Field(default=False, alias="isPlaceholder")
    is_read: bool = Field(default=False, alias="isRead")
    is_favorite: bool = Field(default=False, alias="isFavorite")
    created_at: datetime = Field(..., alias="createdAt")
