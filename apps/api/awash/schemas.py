"""Pydantic schemas for all service I/O contracts.

These schemas define the contracts between:
- API endpoints and clients
- LLM gateway inputs/outputs
- Unified function calls and results
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class JobStatus(str, Enum):
    """Status of a generation job."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    """Kinds of long-running jobs the queue knows how to run."""
    CODE_GENERATION = "code_generation"
    SMART_DIFF = "smart_diff"
    CHAT = "chat"


class Severity(str, Enum):
    """Severity attached to detected errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Route(str, Enum):
    """Handler a user request is routed to."""
    DIRECT_EDIT = "DIRECT_EDIT"
    FEATURE_BUILD = "FEATURE_BUILD"
    META_CHAT = "META_CHAT"
    REFACTOR = "REFACTOR"


class ChangeScope(str, Enum):
    """How much of the code a requested change is expected to touch."""
    MINIMAL = "minimal"
    MODERATE = "moderate"
    EXTENSIVE = "extensive"


class RecommendationLevel(str, Enum):
    HIGHLY_RECOMMENDED = "highly_recommended"
    RECOMMENDED = "recommended"
    VIABLE = "viable"
    NOT_RECOMMENDED = "not_recommended"


Level = Literal["low", "medium", "high"]


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)


class LLMResponse(BaseModel):
    """Response from an LLM provider, normalised to the chat-completions shape."""
    content: str | None = None
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] | None = None


class GatewayResult(BaseModel):
    """Outcome of a call that went through the fallback layers."""
    response: LLMResponse
    model_used: str
    was_backup: bool = False
    gateway: Literal["gateway", "direct-gemini-emergency"] = "gateway"
    attempts: int = 1
    total_latency_ms: int = 0

    @property
    def content(self) -> str:
        return self.response.content or ""


# =============================================================================
# Project / Conversation Schemas
# =============================================================================

class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    html_code: str = ""
    framework: str = "react"


class ProjectUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    html_code: str | None = None
    status: str | None = None


class ProjectResponse(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    description: str | None = None
    html_code: str = ""
    framework: str
    status: str
    created_at: datetime
    updated_at: datetime | None = None


class ConversationCreate(BaseModel):
    title: str = "New conversation"
    project_id: UUID | None = None


class ConversationResponse(BaseModel):
    id: UUID
    user_id: UUID
    project_id: UUID | None = None
    title: str
    created_at: datetime


class MessageCreate(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# =============================================================================
# Job Schemas
# =============================================================================

class JobCreateRequest(BaseModel):
    """API request to queue a new generation job."""
    job_type: JobType = JobType.CODE_GENERATION
    prompt: str = Field(..., min_length=1, max_length=10000)
    project_id: UUID | None = None
    conversation_id: UUID | None = None
    input_data: dict[str, Any] = Field(default_factory=dict)


class JobResponse(BaseModel):
    """API response for job status."""
    id: UUID
    job_type: str
    status: JobStatus
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str | None = None
    error_message: str | None = None
    output_data: dict[str, Any] | None = None
    retry_count: int = 0
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    page: int = 1
    per_page: int = 20


class QueueRunSummary(BaseModel):
    """Result of draining the job queue once."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    timed_out: int = 0
    requeued: int = 0


# =============================================================================
# Unified Function Schemas
# =============================================================================

class FunctionInvocation(BaseModel):
    """Body every unified function accepts."""
    operation: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class FunctionResult(BaseModel):
    """Client-side result of a unified function call. Never raised."""
    data: Any | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# =============================================================================
# Routing Schemas
# =============================================================================

class RoutingDecision(BaseModel):
    route: Route
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    estimated_time: str
    estimated_cost: str


class RouteRequest(BaseModel):
    request: str = Field(..., min_length=1, max_length=10000)
    conversation_id: UUID | None = None
    project_id: UUID | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class RouteResponse(BaseModel):
    success: bool = True
    decision: RoutingDecision
    result: Any | None = None
    duration_ms: int = 0


# =============================================================================
# Smart Diff Schemas
# =============================================================================

class ChangeAnalysis(BaseModel):
    scope: ChangeScope
    affected_sections: list[str] = Field(default_factory=list)
    strategy: str


class DiffEfficiency(BaseModel):
    original_length: int
    new_length: int
    change_percent: str
    lines_preserved: int


class SmartDiffRequest(BaseModel):
    user_request: str = Field(..., min_length=1)
    current_code: str = Field(..., min_length=1)
    conversation_id: UUID | None = None


class SmartDiffResponse(BaseModel):
    success: bool = True
    code: str | None = None
    explanation: str = ""
    change_analysis: ChangeAnalysis
    efficiency: DiffEfficiency
    model_used: str


# =============================================================================
# Decision Schemas
# =============================================================================

class DecisionOption(BaseModel):
    id: str
    name: str
    description: str = ""
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    estimated_effort: Level = "medium"
    risk_level: Level = "medium"
    metadata: dict[str, Any] = Field(default_factory=dict)


class DecisionConstraints(BaseModel):
    time: Literal["urgent", "normal", "flexible"] | None = None
    budget: Level | None = None
    complexity: Literal["simple", "moderate", "complex"] | None = None


class DecisionPreferences(BaseModel):
    preferred_approach: Literal["conservative", "balanced", "innovative"] | None = None
    risk_tolerance: Level | None = None
    speed_vs_quality: Literal["speed", "balanced", "quality"] | None = None


class DecisionContext(BaseModel):
    scenario: str
    user_goal: str
    constraints: DecisionConstraints = Field(default_factory=DecisionConstraints)
    user_preferences: DecisionPreferences = Field(default_factory=DecisionPreferences)


class ScoredOption(DecisionOption):
    overall_score: float
    confidence: float
    reasoning: str
    recommendation_level: RecommendationLevel


class DecisionResult(BaseModel):
    decision_id: UUID | None = None
    best_option: ScoredOption
    all_options: list[ScoredOption]
    confidence: float
    reasoning: str
    requires_user_input: bool
    user_input_reason: str | None = None


class DecisionRequest(BaseModel):
    options: list[DecisionOption] = Field(..., min_length=1)
    context: DecisionContext


class DecisionChoice(BaseModel):
    option_id: str
    was_successful: bool
    feedback: str | None = None


# =============================================================================
# Marketplace Schemas
# =============================================================================

class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = "general"
    description: str = ""
    code: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)


class TemplateResponse(TemplateCreate):
    id: UUID
    downloads: int = 0
    created_at: datetime


class PluginCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    version: str = "1.0.0"
    description: str = ""
    code: str = Field(..., min_length=1)
    is_public: bool = True


class PluginResponse(PluginCreate):
    id: UUID
    author_id: UUID
    installs: int = 0
    created_at: datetime


# =============================================================================
# Error / Schema Validation Schemas
# =============================================================================

class ErrorReport(BaseModel):
    error_type: str = "client_error"
    error_message: str = Field(..., min_length=1)
    severity: Severity = Severity.MEDIUM
    context: dict[str, Any] = Field(default_factory=dict)


class DetectedErrorResponse(BaseModel):
    id: UUID
    error_type: str
    error_message: str
    severity: Severity
    status: str
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SchemaValidateRequest(BaseModel):
    operation: Literal["select", "insert", "update", "upsert"] = "insert"
    table: str
    data: dict[str, Any] | None = None


class SchemaIssue(BaseModel):
    """One problem found while checking a write against the live table."""
    type: Literal["column_mismatch", "table_not_found", "constraint_violation", "type_mismatch"]
    table: str
    column: str | None = None
    expected: str | None = None
    actual: str | None = None
    message: str
    fix_suggestion: str


class SchemaValidationResult(BaseModel):
    valid: bool = True
    errors: list[SchemaIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# Packaging Schemas
# =============================================================================

class PackageDependency(BaseModel):
    name: str
    version: str | None = None
    reason: str | None = None
    category: str | None = None


class PackageRequest(BaseModel):
    project_files: dict[str, str] = Field(..., min_length=1)
    dependencies: list[PackageDependency] = Field(default_factory=list)
    project_name: str = Field(default="my-app", pattern=r"^[a-zA-Z0-9._-]+$")
