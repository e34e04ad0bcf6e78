"""Data access layer for Gatekeeper.

All SQL queries live here. The core never writes raw SQL; it calls
Repository methods that take and return Pydantic models. Repository
implements the same Store contract as MemoryStore so the two backends are
interchangeable.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Optional

from gatekeeper.core.models import (
    Alternative,
    ConfidenceEnvelope,
    ConfidenceFactor,
    ConfidenceLevel,
    FeedbackRecord,
    LearnedPattern,
    ProcessingStatus,
    ReviewDecision,
    ReviewItem,
    ReviewOption,
    ReviewStatus,
    VerificationReport,
)
from gatekeeper.db.engine import DatabaseEngine
from gatekeeper.db.store import Store


def _json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


class Repository(Store):
    """Data access layer wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    # -------------------------------------------------------------------
    # Envelopes
    # -------------------------------------------------------------------

    def save_envelope(self, envelope: ConfidenceEnvelope) -> None:
        self.engine.execute(
            """INSERT INTO envelopes (operation_id, method_name, parameters, factors,
                   overall_confidence, level, alternatives, status, result, error,
                   executed_parameters, verification_report, depends_on,
                   created_at, updated_at, executed_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (operation_id) DO UPDATE SET
                   status = EXCLUDED.status,
                   result = EXCLUDED.result,
                   error = EXCLUDED.error,
                   executed_parameters = EXCLUDED.executed_parameters,
                   verification_report = EXCLUDED.verification_report,
                   updated_at = EXCLUDED.updated_at,
                   executed_at = EXCLUDED.executed_at""",
            [
                envelope.operation_id,
                envelope.method_name,
                _json(envelope.parameters),
                _json([f.model_dump(mode="json") for f in envelope.factors]),
                envelope.overall_confidence,
                envelope.level.value,
                _json([a.model_dump(mode="json") for a in envelope.alternatives]),
                envelope.status.value,
                _json(envelope.result),
                envelope.error,
                _json(envelope.executed_parameters),
                _json(
                    envelope.verification_report.model_dump(mode="json")
                    if envelope.verification_report else None
                ),
                _json(envelope.depends_on),
                envelope.created_at,
                envelope.updated_at,
                envelope.executed_at,
            ],
        )

    def get_envelope(self, operation_id: str) -> Optional[ConfidenceEnvelope]:
        row = self.engine.fetch_one(
            "SELECT * FROM envelopes WHERE operation_id = %s", [operation_id]
        )
        if row is None:
            return None
        return _row_to_envelope(row)

    def list_envelopes(self) -> list[ConfidenceEnvelope]:
        rows = self.engine.fetch_all("SELECT * FROM envelopes ORDER BY created_at ASC")
        return [_row_to_envelope(r) for r in rows]

    # -------------------------------------------------------------------
    # Review items
    # -------------------------------------------------------------------

    def save_review_item(self, item: ReviewItem) -> None:
        self.engine.execute(
            """INSERT INTO review_items (review_id, envelope_id, method_name, confidence,
                   reason, questions, options, ai_recommendation, status, queued_at,
                   expires_at, decision, notes, modified_parameters, resolved_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (review_id) DO UPDATE SET
                   status = EXCLUDED.status,
                   decision = EXCLUDED.decision,
                   notes = EXCLUDED.notes,
                   modified_parameters = EXCLUDED.modified_parameters,
                   resolved_at = EXCLUDED.resolved_at""",
            [
                item.review_id,
                item.envelope_id,
                item.method_name,
                item.confidence,
                item.reason,
                _json(item.questions),
                _json([o.model_dump(mode="json") for o in item.options]),
                item.ai_recommendation,
                item.status.value,
                item.queued_at,
                item.expires_at,
                item.decision.value if item.decision else None,
                item.notes,
                _json(item.modified_parameters),
                item.resolved_at,
            ],
        )

    def get_review_item(self, review_id: str) -> Optional[ReviewItem]:
        row = self.engine.fetch_one(
            "SELECT * FROM review_items WHERE review_id = %s", [review_id]
        )
        if row is None:
            return None
        return _row_to_review_item(row)

    def list_review_items(self) -> list[ReviewItem]:
        rows = self.engine.fetch_all("SELECT * FROM review_items ORDER BY queued_at ASC")
        return [_row_to_review_item(r) for r in rows]

    # -------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------

    def append_feedback(self, record: FeedbackRecord) -> None:
        self.engine.execute(
            """INSERT INTO feedback_records (feedback_id, operation_id, method_name,
                   original_confidence, original_level, human_decision, ai_was_correct,
                   recorded_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                record.feedback_id,
                record.operation_id,
                record.method_name,
                record.original_confidence,
                record.original_level.value,
                record.human_decision.value,
                record.ai_was_correct,
                record.recorded_at,
            ],
        )

    def list_feedback(self) -> list[FeedbackRecord]:
        rows = self.engine.fetch_all(
            "SELECT * FROM feedback_records ORDER BY recorded_at ASC, feedback_id ASC"
        )
        return [_row_to_feedback(r) for r in rows]

    # -------------------------------------------------------------------
    # Learned patterns
    # -------------------------------------------------------------------

    def save_pattern(self, pattern: LearnedPattern) -> None:
        self.engine.execute(
            """INSERT INTO learned_patterns (method_name, pattern_id, description,
                   confidence_adjustment, sample_count, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s)
               ON CONFLICT (method_name) DO UPDATE SET
                   description = EXCLUDED.description,
                   confidence_adjustment = EXCLUDED.confidence_adjustment,
                   sample_count = EXCLUDED.sample_count,
                   updated_at = EXCLUDED.updated_at""",
            [
                pattern.method_name,
                pattern.pattern_id,
                pattern.description,
                pattern.confidence_adjustment,
                pattern.sample_count,
                pattern.updated_at,
            ],
        )

    def list_patterns(self) -> list[LearnedPattern]:
        rows = self.engine.fetch_all("SELECT * FROM learned_patterns ORDER BY method_name")
        return [_row_to_pattern(r) for r in rows]

    def close(self) -> None:
        self.engine.close()


# ---------------------------------------------------------------------------
# Row converters
# ---------------------------------------------------------------------------

def _row_to_envelope(row: dict) -> ConfidenceEnvelope:
    report = row.get("verification_report")
    return ConfidenceEnvelope(
        operation_id=row["operation_id"],
        method_name=row["method_name"],
        parameters=row.get("parameters") or {},
        factors=[ConfidenceFactor(**f) for f in row.get("factors") or []],
        overall_confidence=row["overall_confidence"],
        level=ConfidenceLevel(row["level"]),
        alternatives=[Alternative(**a) for a in row.get("alternatives") or []],
        status=ProcessingStatus(row["status"]),
        result=row.get("result"),
        error=row.get("error"),
        executed_parameters=row.get("executed_parameters"),
        verification_report=VerificationReport(**report) if report else None,
        depends_on=row.get("depends_on") or [],
        created_at=row.get("created_at", datetime.now(UTC)),
        updated_at=row.get("updated_at", datetime.now(UTC)),
        executed_at=row.get("executed_at"),
    )


def _row_to_review_item(row: dict) -> ReviewItem:
    return ReviewItem(
        review_id=row["review_id"],
        envelope_id=row["envelope_id"],
        method_name=row["method_name"],
        confidence=row["confidence"],
        reason=row["reason"],
        questions=row.get("questions") or [],
        options=[ReviewOption(**o) for o in row.get("options") or []],
        ai_recommendation=row.get("ai_recommendation") or "",
        status=ReviewStatus(row["status"]),
        queued_at=row["queued_at"],
        expires_at=row["expires_at"],
        decision=ReviewDecision(row["decision"]) if row.get("decision") else None,
        notes=row.get("notes"),
        modified_parameters=row.get("modified_parameters"),
        resolved_at=row.get("resolved_at"),
    )


def _row_to_feedback(row: dict) -> FeedbackRecord:
    return FeedbackRecord(
        feedback_id=row["feedback_id"],
        operation_id=row["operation_id"],
        method_name=row["method_name"],
        original_confidence=row["original_confidence"],
        original_level=ConfidenceLevel(row["original_level"]),
        human_decision=ReviewDecision(row["human_decision"]),
        ai_was_correct=row["ai_was_correct"],
        recorded_at=row["recorded_at"],
    )


def _row_to_pattern(row: dict) -> LearnedPattern:
    return LearnedPattern(
        pattern_id=row["pattern_id"],
        method_name=row["method_name"],
        description=row["description"],
        confidence_adjustment=row.get("confidence_adjustment", 0.0),
        sample_count=row.get("sample_count", 0),
        updated_at=row.get("updated_at", datetime.now(UTC)),
    )
