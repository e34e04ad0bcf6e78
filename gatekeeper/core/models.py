"""All Pydantic data models for Gatekeeper.

Defines the data contracts shared by the calculator, review queue,
feedback learner, coordinator, verifier and orchestrator. Every persisted
row and every inter-component message has a model here.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ConfidenceLevel(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ProcessingStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_REVIEW = "InReview"
    EXECUTED = "Executed"
    REJECTED = "Rejected"
    EXPIRED = "Expired"
    SKIPPED = "Skipped"
    VERIFIED = "Verified"
    VERIFICATION_FAILED = "VerificationFailed"
    EXECUTION_FAILED = "ExecutionFailed"


class ReviewDecision(str, enum.Enum):
    APPROVE = "Approve"
    MODIFY = "Modify"
    REJECT = "Reject"
    SKIP = "Skip"

    @classmethod
    def parse(cls, raw: str) -> "ReviewDecision":
        """Case-insensitive lookup by value ("approve", "REJECT", ...)."""
        for member in cls:
            if member.value.lower() == raw.strip().lower():
                return member
        raise ValueError(f"Invalid decision: {raw}. Use: approve, modify, reject, or skip")


class ReviewStatus(str, enum.Enum):
    PENDING = "Pending"
    RESOLVED = "Resolved"
    EXPIRED = "Expired"


class RelationType(str, enum.Enum):
    REQUIRES = "requires"
    REFERENCES = "references"
    SEQUENCE = "sequence"


# Envelope lifecycle. Re-verification is allowed from either verification
# outcome; everything else only moves forward.
ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({
        ProcessingStatus.EXECUTED,
        ProcessingStatus.IN_REVIEW,
        ProcessingStatus.REJECTED,
        ProcessingStatus.EXECUTION_FAILED,
    }),
    ProcessingStatus.IN_REVIEW: frozenset({
        ProcessingStatus.EXECUTED,
        ProcessingStatus.REJECTED,
        ProcessingStatus.EXPIRED,
        ProcessingStatus.SKIPPED,
        ProcessingStatus.EXECUTION_FAILED,
    }),
    ProcessingStatus.EXECUTED: frozenset({
        ProcessingStatus.VERIFIED,
        ProcessingStatus.VERIFICATION_FAILED,
    }),
    ProcessingStatus.VERIFIED: frozenset({
        ProcessingStatus.VERIFIED,
        ProcessingStatus.VERIFICATION_FAILED,
    }),
    ProcessingStatus.VERIFICATION_FAILED: frozenset({
        ProcessingStatus.VERIFIED,
        ProcessingStatus.VERIFICATION_FAILED,
    }),
    ProcessingStatus.REJECTED: frozenset(),
    ProcessingStatus.EXPIRED: frozenset(),
    ProcessingStatus.SKIPPED: frozenset(),
    ProcessingStatus.EXECUTION_FAILED: frozenset(),
}

EXECUTED_STATES = frozenset({
    ProcessingStatus.EXECUTED,
    ProcessingStatus.VERIFIED,
    ProcessingStatus.VERIFICATION_FAILED,
})


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------

class ThresholdSet(BaseModel):
    high: float = 0.85
    medium: float = 0.60
    low: float = 0.40

    @model_validator(mode="after")
    def _check_order(self) -> "ThresholdSet":
        if not 0.0 <= self.low <= self.medium <= self.high <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= low <= medium <= high <= 1")
        return self

    def level_for(self, score: float) -> ConfidenceLevel:
        if score >= self.high:
            return ConfidenceLevel.HIGH
        if score >= self.medium:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW


class ConfidenceFactor(BaseModel):
    """One named, weighted signal contributing to an overall score."""
    model_config = ConfigDict(frozen=True)

    name: str
    score: float = Field(ge=0.0, le=1.0)
    weight: float = Field(ge=0.0)
    reason: str = ""


class Alternative(BaseModel):
    """A plausible alternative interpretation of the proposed parameters."""
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0


class VerificationCheck(BaseModel):
    name: str
    passed: bool
    expected: Any = None
    actual: Any = None
    tolerance: Optional[float] = None
    deviation: Optional[float] = None
    message: str = ""
    execution_time_ms: float = 0.0


class VerificationReport(BaseModel):
    operation_id: str
    checks: list[VerificationCheck] = Field(default_factory=list)
    total_execution_time_ms: float = 0.0
    verified_at: datetime = Field(default_factory=_now)

    @property
    def all_passed(self) -> bool:
        return bool(self.checks) and all(c.passed for c in self.checks)

    @property
    def total_checks(self) -> int:
        return len(self.checks)

    @property
    def passed_count(self) -> int:
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed_count(self) -> int:
        return self.total_checks - self.passed_count

    @property
    def failures(self) -> list[str]:
        return [f"{c.name}: {c.message}" for c in self.checks if not c.passed]

    def summary(self) -> str:
        if self.all_passed:
            return f"All {self.total_checks} verification checks passed"
        return f"{self.failed_count} of {self.total_checks} verification checks failed"


class ConfidenceEnvelope(BaseModel):
    """A proposed operation, its confidence computation and its lifecycle."""
    operation_id: str = Field(default_factory=_new_id)
    method_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    factors: list[ConfidenceFactor] = Field(default_factory=list)
    overall_confidence: float = 0.0
    level: ConfidenceLevel = ConfidenceLevel.LOW
    alternatives: list[Alternative] = Field(default_factory=list)
    status: ProcessingStatus = ProcessingStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    executed_parameters: Optional[dict[str, Any]] = None
    verification_report: Optional[VerificationReport] = None
    depends_on: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    executed_at: Optional[datetime] = None

    def flagged_factors(self, threshold: float) -> list[ConfidenceFactor]:
        return [f for f in self.factors if f.score < threshold]

    @property
    def element_id(self) -> Optional[str]:
        if isinstance(self.result, dict):
            value = self.result.get("elementId")
            return str(value) if value is not None else None
        return None


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------

class ReviewOption(BaseModel):
    id: str
    label: str
    description: str = ""
    is_recommended: bool = False


class ReviewItem(BaseModel):
    review_id: str = Field(default_factory=_new_id)
    envelope_id: str
    method_name: str
    confidence: float
    reason: str
    questions: list[str] = Field(default_factory=list)
    options: list[ReviewOption] = Field(default_factory=list)
    ai_recommendation: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    queued_at: datetime = Field(default_factory=_now)
    expires_at: datetime
    decision: Optional[ReviewDecision] = None
    notes: Optional[str] = None
    modified_parameters: Optional[dict[str, Any]] = None
    resolved_at: Optional[datetime] = None

    def is_overdue(self, now: datetime) -> bool:
        return now >= self.expires_at


class QueueStats(BaseModel):
    total_items: int = 0
    pending_items: int = 0
    approved_items: int = 0
    modified_items: int = 0
    rejected_items: int = 0
    skipped_items: int = 0
    expired_items: int = 0
    average_confidence: float = 0.0
    oldest_pending: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Feedback & learning
# ---------------------------------------------------------------------------

class FeedbackRecord(BaseModel):
    """Append-only record of a human decision against the original score."""
    model_config = ConfigDict(frozen=True)

    feedback_id: str = Field(default_factory=_new_id)
    operation_id: str
    method_name: str
    original_confidence: float
    original_level: ConfidenceLevel
    human_decision: ReviewDecision
    ai_was_correct: bool
    recorded_at: datetime = Field(default_factory=_now)


class LearnedPattern(BaseModel):
    pattern_id: str = Field(default_factory=_new_id)
    method_name: str
    description: str
    confidence_adjustment: float = 0.0
    sample_count: int = 0
    updated_at: datetime = Field(default_factory=_now)


class LearningSession(BaseModel):
    session_id: str = Field(default_factory=_new_id)
    project_name: Optional[str] = None
    project_path: Optional[str] = None
    started_at: datetime = Field(default_factory=_now)
    learned_patterns: dict[str, LearnedPattern] = Field(default_factory=dict)
    project_rules: dict[str, str] = Field(default_factory=dict)
    terminology_map: dict[str, str] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    session_id: str
    project_name: Optional[str] = None
    pattern_count: int = 0
    rule_count: int = 0
    terminology_count: int = 0
    duration_seconds: float = 0.0
    ended_at: datetime = Field(default_factory=_now)


class MethodStats(BaseModel):
    method_name: str
    total: int = 0
    correct: int = 0

    @property
    def accuracy_rate(self) -> float:
        return self.correct / self.total if self.total else 0.0


class FeedbackStats(BaseModel):
    total_feedback: int = 0
    total_correct: int = 0
    accuracy_rate: float = 0.0
    pattern_count: int = 0
    top_methods: list[MethodStats] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class Rule(BaseModel):
    rule_id: str
    name: str
    category: str = ""
    applies_to: list[str] = Field(default_factory=lambda: ["all"])
    confidence: float = 0.0
    validation_count: int = 0
    mcp_methods: list[str] = Field(default_factory=list)
    trigger: dict[str, Any] = Field(default_factory=dict)
    action: dict[str, Any] = Field(default_factory=dict)

    def applies_to_type(self, project_type: str) -> bool:
        return "all" in self.applies_to or project_type in self.applies_to


class SuggestedAction(BaseModel):
    rule_id: str
    rule_name: str
    action_type: str = ""
    description: str = ""
    sheet_pattern: Optional[str] = None
    naming_pattern: Optional[str] = None
    confidence: float = 0.0
    mcp_methods: list[str] = Field(default_factory=list)


class ProjectAnalysis(BaseModel):
    success: bool = True
    error: Optional[str] = None
    project_name: Optional[str] = None
    project_type: str = "unknown"
    project_type_confidence: float = 0.0
    detected_firm: Optional[str] = None
    firm_pattern: Optional[str] = None
    indicators: list[str] = Field(default_factory=list)
    applicable_rule_count: int = 0
    triggered_rule_count: int = 0
    triggered_rules: list[Rule] = Field(default_factory=list)
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------

class DependencyNode(BaseModel):
    node_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class DependencyEdge(BaseModel):
    source: str
    target: str
    relation: RelationType = RelationType.REQUIRES
    strength: float = 1.0
    notes: str = ""


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------

class ExecutionOutcome(BaseModel):
    """What an external executor reports back for one call."""
    success: bool
    result: Any = None
    error_message: Optional[str] = None


class SheetInfo(BaseModel):
    number: str
    name: str = ""


class HostState(BaseModel):
    """Read-only snapshot of the host document used for rule evaluation."""
    document_title: str = ""
    project_info: dict[str, str] = Field(default_factory=dict)
    levels: list[str] = Field(default_factory=list)
    sheets: list[SheetInfo] = Field(default_factory=list)
    views: list[str] = Field(default_factory=list)
    rooms: list[str] = Field(default_factory=list)
    element_counts: dict[str, int] = Field(default_factory=dict)
