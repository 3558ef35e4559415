"""SQLModel database tables.

Tables:
- Project / Conversation / Message: user workspaces and chat history
- GenerationJob: long-running AI generation requests (the job queue)
- DetectedError / GenerationFailure / ErrorPattern: error tracking
- Template / Plugin: marketplace entries
- ProjectMemory: per-conversation coding patterns fed back into prompts
- RoutingDecision / DecisionLog / GenerationAnalytics: decision audit trail
- PerformanceMetric / AnalyticsEvent: monitoring data
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime; every timestamp column stores these."""
    return datetime.now(timezone.utc)


# =============================================================================
# Workspace Models
# =============================================================================

class Project(SQLModel, table=True):
    """A generated project owned by a user."""

    __tablename__ = "projects"
    __table_args__ = (
        Index("ix_projects_user_created", "user_id", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_column=Column(Text))
    html_code: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    framework: str = Field(default="react")
    status: str = Field(default="draft")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    project_id: UUID | None = Field(default=None, foreign_key="projects.id", index=True)
    title: str = Field(default="New conversation")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Message(SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id")
    role: str = Field(default="user")
    content: str = Field(sa_column=Column(Text, nullable=False))
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


# =============================================================================
# Job Queue
# =============================================================================

class GenerationJob(SQLModel, table=True):
    """One long-running AI generation request.

    Status moves queued -> running -> completed | failed, see ``awash.jobs.queue``.
    """

    __tablename__ = "ai_generation_jobs"
    __table_args__ = (
        Index("ix_jobs_status_created", "status", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    project_id: UUID | None = Field(default=None, foreign_key="projects.id")
    conversation_id: UUID | None = Field(default=None, foreign_key="conversations.id")

    job_type: str = Field(index=True)
    status: str = Field(default="queued", index=True)  # Use JobStatus enum values
    input_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    output_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    progress: int = Field(default=0)
    current_step: str | None = Field(default=None)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    retry_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    started_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    completed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# Error Tracking
# =============================================================================

class DetectedError(SQLModel, table=True):
    __tablename__ = "detected_errors"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)
    error_type: str = Field(index=True)
    error_message: str = Field(sa_column=Column(Text, nullable=False))
    severity: str = Field(default="medium", index=True)  # Use Severity enum values
    status: str = Field(default="pending")  # pending, auto_fixed, resolved
    context: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class GenerationFailure(SQLModel, table=True):
    __tablename__ = "generation_failures"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)
    job_id: UUID | None = Field(default=None, index=True)
    error_type: str
    error_message: str = Field(sa_column=Column(Text, nullable=False))
    user_request: str | None = Field(default=None, sa_column=Column(Text))
    context: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class ErrorPattern(SQLModel, table=True):
    """A recurring error signature and the fix that worked for it."""

    __tablename__ = "error_patterns"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    error_signature: str = Field(unique=True, index=True)
    category: str = Field(default="general")
    solution: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    times_seen: int = Field(default=1)
    success_rate: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# Marketplace
# =============================================================================

class Template(SQLModel, table=True):
    __tablename__ = "templates"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(index=True)
    category: str = Field(default="general", index=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    code: str = Field(sa_column=Column(Text, nullable=False))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    downloads: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Plugin(SQLModel, table=True):
    __tablename__ = "plugins"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(index=True)
    author_id: UUID = Field(index=True)
    version: str = Field(default="1.0.0")
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    code: str = Field(sa_column=Column(Text, nullable=False))
    installs: int = Field(default=0)
    is_public: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


# =============================================================================
# Memory / Decisions / Analytics
# =============================================================================

class ProjectMemory(SQLModel, table=True):
    __tablename__ = "project_memory"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(unique=True, index=True)
    coding_patterns: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    architecture: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class RoutingDecisionLog(SQLModel, table=True):
    __tablename__ = "routing_decisions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)
    conversation_id: UUID | None = Field(default=None)
    project_id: UUID | None = Field(default=None)
    request_text: str = Field(sa_column=Column(Text, nullable=False))
    route: str = Field(index=True)
    confidence: float
    reasoning: str
    estimated_time: str
    estimated_cost: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class DecisionLog(SQLModel, table=True):
    __tablename__ = "decision_logs"
    __table_args__ = (
        Index("ix_decision_logs_scenario_created", "scenario_type", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    scenario_type: str
    scenario_description: str = Field(sa_column=Column(Text, nullable=False))
    user_goal: str
    recommended_option: str
    all_options: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    confidence_score: float
    reasoning: str = Field(sa_column=Column(Text, nullable=False))
    requires_user_input: bool = Field(default=False)
    user_choice: str | None = Field(default=None)
    was_correct: bool | None = Field(default=None)
    user_feedback: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class GenerationAnalytics(SQLModel, table=True):
    __tablename__ = "generation_analytics"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    model_used: str
    user_prompt: str = Field(sa_column=Column(Text, nullable=False))
    system_prompt: str = Field(default="")
    generated_code: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    existing_code_context: str = Field(default="")
    status: str = Field(default="success")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class PerformanceMetric(SQLModel, table=True):
    __tablename__ = "performance_metrics"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)
    metric_type: str = Field(index=True)
    metric_value: float
    meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class AnalyticsEvent(SQLModel, table=True):
    __tablename__ = "analytics_events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)
    event_type: str = Field(index=True)
    event_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


# Table name -> model class, for code that only knows the table name
TABLE_MODELS: dict[str, type[SQLModel]] = {
    model.__tablename__: model
    for model in (
        Project,
        Conversation,
        Message,
        GenerationJob,
        DetectedError,
        GenerationFailure,
        ErrorPattern,
        Template,
        Plugin,
        ProjectMemory,
        RoutingDecisionLog,
        DecisionLog,
        GenerationAnalytics,
        PerformanceMetric,
        AnalyticsEvent,
    )
}
