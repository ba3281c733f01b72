"""Core data models for the SailMatch AI core.

This module defines the shared data structures used by the gateway, the
assessment pipeline and the assistant, so every boundary is validated.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def clamp(value: float, low: float = 0, high: float = 10) -> float:
    """Clamp a number into [low, high]."""
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ImageAttachment(BaseModel):
    """Base64 image passed through to vision-capable providers."""
    data: str = Field(..., description="Base64-encoded image bytes")
    mime_type: str = Field(default="image/jpeg")


class AIRequest(BaseModel):
    """A single gateway call."""
    use_case: str = Field(..., description="Named category of AI invocation")
    prompt: str
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    images: list[ImageAttachment] = Field(default_factory=list)


class AIResponse(BaseModel):
    """Text produced by the first (provider, model) pair that succeeded."""
    text: str
    provider: str
    model: str


# ---------------------------------------------------------------------------
# Registrations and requirements
# ---------------------------------------------------------------------------

class RequirementType(str, Enum):
    """Closed set of requirement kinds a journey owner can define."""
    RISK_LEVEL = "risk_level"
    EXPERIENCE_LEVEL = "experience_level"
    SKILL = "skill"
    PASSPORT = "passport"
    QUESTION = "question"


class RegistrationStatus(str, Enum):
    PENDING = "Pending approval"
    APPROVED = "Approved"
    NOT_APPROVED = "Not approved"
    CANCELLED = "Cancelled"


class PassportOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    require_photo_validation: bool = False
    pass_confidence_score: Optional[int] = Field(default=None, ge=0, le=10)


class _RequirementBase(BaseModel):
    """Fields common to every requirement kind. Read-only once created."""
    model_config = ConfigDict(frozen=True)

    id: str
    journey_id: str
    weight: float = Field(default=5, description="Relative weight, clamped to [0, 10]")
    is_required: bool = True
    order: int = 0

    @field_validator("weight", mode="before")
    @classmethod
    def _clamp_weight(cls, value: Any) -> float:
        return clamp(float(value if value is not None else 5))


class RiskLevelRequirement(_RequirementBase):
    type: Literal["risk_level"] = "risk_level"


class ExperienceLevelRequirement(_RequirementBase):
    type: Literal["experience_level"] = "experience_level"


class SkillRequirement(_RequirementBase):
    type: Literal["skill"] = "skill"
    skill_name: str
    qualification_criteria: Optional[str] = None


class QuestionRequirement(_RequirementBase):
    type: Literal["question"] = "question"
    question_text: str
    qualification_criteria: Optional[str] = None


class PassportRequirement(_RequirementBase):
    type: Literal["passport"] = "passport"
    passport_options: PassportOptions = Field(default_factory=PassportOptions)


Requirement = Annotated[
    Union[
        RiskLevelRequirement,
        ExperienceLevelRequirement,
        SkillRequirement,
        QuestionRequirement,
        PassportRequirement,
    ],
    Field(discriminator="type"),
]

_requirement_adapter: TypeAdapter[Requirement] = TypeAdapter(Requirement)


def parse_requirement(data: dict[str, Any]) -> Requirement:
    """Build the concrete requirement model for a raw row."""
    return _requirement_adapter.validate_python(data)


class RegistrationAnswer(BaseModel):
    """What the crew member submitted for one requirement."""
    requirement_id: str
    answer_text: Optional[str] = None
    answer_json: Optional[Any] = None
    passport_document_id: Optional[str] = None
    photo: Optional[ImageAttachment] = Field(
        default=None,
        description="Live photo used for face comparison against the passport"
    )


class PassportDocument(BaseModel):
    id: str
    owner_id: str
    image: ImageAttachment


class AssessmentResult(BaseModel):
    """Per-(registration, requirement) score row."""
    registration_id: str
    requirement_id: str
    score: float = Field(default=0, description="Clamped to [0, 10]")
    reasoning: str = ""
    passed: Optional[bool] = None
    photo_verified: Optional[bool] = None
    photo_confidence: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        try:
            return clamp(float(value))
        except (TypeError, ValueError):
            return 0


class Registration(BaseModel):
    id: str
    user_id: str
    leg_id: str
    status: RegistrationStatus = RegistrationStatus.PENDING
    ai_match_score: Optional[int] = Field(default=None, ge=0, le=100)
    ai_match_reasoning: Optional[str] = None
    auto_approved: bool = False


class Location(BaseModel):
    name: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Boat(BaseModel):
    id: str
    owner_id: str
    name: str
    type: Optional[str] = None
    make_model: Optional[str] = None
    length_m: Optional[float] = None
    home_port: Optional[str] = None


class Journey(BaseModel):
    id: str
    name: str
    owner_id: str
    boat_id: Optional[str] = None
    state: str = "Published"
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_approval_enabled: bool = False
    auto_approval_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    risk_level: Any = Field(default=None, description="Scalar, list or JSON-encoded list")
    min_experience_level: Optional[int] = Field(default=None, ge=1, le=4)


class Leg(BaseModel):
    id: str
    journey_id: str
    name: str
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_location: Optional[Location] = None
    end_location: Optional[Location] = None
    skills: list[str] = Field(default_factory=list)
    crew_needed: Optional[int] = Field(default=None, ge=0)
    min_experience_level: Optional[int] = Field(default=None, ge=1, le=4)


class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    experience_level: Optional[int] = Field(default=None, ge=1, le=4)
    risk_level: Any = Field(default=None, description="Scalar, list or JSON-encoded list")
    skills: list[Any] = Field(default_factory=list)
    user_description: Optional[str] = None
    certifications: Optional[str] = None
    sailing_preferences: Optional[str] = None
    roles: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "Crew member"


class AssessmentContext(BaseModel):
    """Everything the pipeline needs, loaded once before any decision."""
    registration: Registration
    journey: Journey
    leg: Leg
    owner: Profile
    crew: Profile
    requirements: list[Requirement] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationType(str, Enum):
    REGISTRATION_APPROVED = "registration_approved"
    REGISTRATION_PENDING = "registration_pending"
    AI_AUTO_APPROVED = "ai_auto_approved"
    AI_REVIEW_NEEDED = "ai_review_needed"


class Notification(BaseModel):
    user_id: str
    type: NotificationType
    title: str
    message: Optional[str] = None
    link: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ---------------------------------------------------------------------------
# Assistant
# ---------------------------------------------------------------------------

class ToolAccess(str, Enum):
    """Who may see and call a tool."""
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    CREW = "crew"
    OWNER = "owner"


class ToolCategory(str, Enum):
    """Data tools read; action tools mutate and need explicit approval."""
    DATA = "data"
    ACTION = "action"


class ToolDefinition(BaseModel):
    """
    Static catalogue entry for one assistant tool.

    The catalogue is process-wide and read-only at runtime.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Tool name as the model must spell it")
    description: str = Field(..., description="Clear description for model usage")
    access: ToolAccess = Field(default=ToolAccess.PUBLIC)
    category: ToolCategory = Field(default=ToolCategory.DATA)
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for argument validation"
    )
    label: Optional[str] = Field(
        default=None,
        description="Human-readable label shown when an action awaits approval"
    )

    @property
    def is_action(self) -> bool:
        return self.category == ToolCategory.ACTION


class UserContext(BaseModel):
    """Caller identity as resolved from the request, never from the model."""
    user_id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    roles: list[str] = Field(default_factory=list)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @classmethod
    def anonymous(cls) -> "UserContext":
        return cls()


class ToolCall(BaseModel):
    """A tool invocation parsed out of model output."""
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    PENDING_APPROVAL = "pending_approval"


class ToolResult(BaseModel):
    tool_call_id: str
    name: str
    status: ToolResultStatus
    data: Optional[Any] = None
    error: Optional[str] = None
    execution_time_ms: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status == ToolResultStatus.SUCCESS


class PendingAction(BaseModel):
    """An action tool call held until the caller approves it explicitly."""
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    label: str

    def matches(self, call: ToolCall) -> bool:
        return self.tool_name == call.name and self.arguments == call.arguments


class LegReference(BaseModel):
    id: str
    name: str
    journey_name: Optional[str] = None


class MessageMetadata(BaseModel):
    tool_calls: list[ToolCall] = Field(default_factory=list)
    leg_references: list[LegReference] = Field(default_factory=list)
    pending_action: Optional[PendingAction] = None


class ConversationMessage(BaseModel):
    """A single turn of chat history."""
    role: Literal["system", "user", "assistant"]
    content: str
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ChatSession(BaseModel):
    """Chat history held by the session store between requests."""
    id: str
    user: UserContext
    title: Optional[str] = None
    messages: list[ConversationMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AuditEntry(BaseModel):
    """Audit log entry for one tool execution."""
    id: str
    timestamp: datetime
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    status: ToolResultStatus
    error: Optional[str] = None
    execution_time_ms: Optional[float] = None
