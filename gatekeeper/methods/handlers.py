"""Entry-point handlers.

Each handler takes the process context and a validated request model and
returns a JSON-ready dict with camelCase keys. Handlers raise
GatekeeperError subclasses for failures; MethodRegistry.call turns those
into failure payloads.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from pydantic import Field, ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from gatekeeper.core.exceptions import (
    ConfigError,
    GatekeeperError,
    NoActiveContextError,
    NotFoundError,
    ValidationError,
)
from gatekeeper.core.models import (
    ConfidenceEnvelope,
    ConfidenceLevel,
    LearningSession,
    ProjectAnalysis,
    ReviewDecision,
    ReviewItem,
    Rule,
    SuggestedAction,
    ThresholdSet,
    VerificationReport,
)
from gatekeeper.methods.registry import MethodEntry, MethodRegistry, RequestModel
from gatekeeper.rules.evaluator import render_example, render_naming

if TYPE_CHECKING:
    from gatekeeper.core.factory import GatekeeperContext


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _thresholds(ts: ThresholdSet) -> dict[str, float]:
    return {"high": ts.high, "medium": ts.medium, "low": ts.low}


def envelope_payload(envelope: ConfidenceEnvelope) -> dict[str, Any]:
    return {
        "operationId": envelope.operation_id,
        "methodName": envelope.method_name,
        "parameters": envelope.parameters,
        "overallConfidence": envelope.overall_confidence,
        "level": envelope.level.value,
        "factors": [
            {"name": f.name, "score": f.score, "weight": f.weight, "reason": f.reason}
            for f in envelope.factors
        ],
        "alternatives": [
            {"description": a.description, "parameters": a.parameters, "confidence": a.confidence}
            for a in envelope.alternatives
        ],
        "status": envelope.status.value,
        "result": envelope.result,
        "error": envelope.error,
        "executedParameters": envelope.executed_parameters,
        "dependsOn": list(envelope.depends_on),
        "createdAt": _iso(envelope.created_at),
        "updatedAt": _iso(envelope.updated_at),
        "executedAt": _iso(envelope.executed_at),
    }


def review_item_payload(item: ReviewItem) -> dict[str, Any]:
    return {
        "reviewId": item.review_id,
        "operationId": item.envelope_id,
        "methodName": item.method_name,
        "confidence": item.confidence,
        "reason": item.reason,
        "questions": list(item.questions),
        "options": [
            {
                "id": o.id,
                "label": o.label,
                "description": o.description,
                "isRecommended": o.is_recommended,
            }
            for o in item.options
        ],
        "aiRecommendation": item.ai_recommendation,
        "queuedAt": _iso(item.queued_at),
        "expiresAt": _iso(item.expires_at),
    }


def verification_payload(report: VerificationReport) -> dict[str, Any]:
    return {
        "passed": report.all_passed,
        "totalChecks": report.total_checks,
        "passedCount": report.passed_count,
        "failedCount": report.failed_count,
        "summary": report.summary(),
        "checks": [
            {
                "checkName": c.name,
                "passed": c.passed,
                "expected": c.expected,
                "actual": c.actual,
                "tolerance": c.tolerance,
                "deviation": c.deviation,
                "message": c.message,
                "executionTimeMs": c.execution_time_ms,
            }
            for c in report.checks
        ],
        "failures": report.failures,
        "executionTimeMs": report.total_execution_time_ms,
    }


def rule_payload(rule: Rule) -> dict[str, Any]:
    return {
        "ruleId": rule.rule_id,
        "name": rule.name,
        "category": rule.category,
        "appliesTo": list(rule.applies_to),
        "confidence": rule.confidence,
        "validationCount": rule.validation_count,
        "mcpMethods": list(rule.mcp_methods),
    }


def action_payload(action: SuggestedAction) -> dict[str, Any]:
    return {
        "ruleId": action.rule_id,
        "ruleName": action.rule_name,
        "actionType": action.action_type,
        "description": action.description,
        "sheetPattern": action.sheet_pattern,
        "namingPattern": action.naming_pattern,
        "confidence": action.confidence,
        "mcpMethods": list(action.mcp_methods),
    }


def _session_payload(session: LearningSession) -> dict[str, Any]:
    return {
        "sessionId": session.session_id,
        "projectName": session.project_name,
        "projectPath": session.project_path,
        "startedAt": _iso(session.started_at),
        "patternsLearned": len(session.learned_patterns),
        "rulesCount": len(session.project_rules),
        "terminologyCount": len(session.terminology_map),
        "patterns": [
            {
                "patternId": p.pattern_id,
                "methodName": p.method_name,
                "description": p.description,
                "confidenceAdjustment": p.confidence_adjustment,
                "sampleCount": p.sample_count,
            }
            for p in session.learned_patterns.values()
        ],
        "rules": dict(session.project_rules),
        "terminology": dict(session.terminology_map),
    }


def _analyze(ctx: "GatekeeperContext") -> ProjectAnalysis:
    state = ctx.host_reader.read_state()
    if state is None:
        raise NoActiveContextError("No active document")
    analysis = ctx.evaluator.analyze_project(state)
    if not analysis.success:
        raise ConfigError(analysis.error or "Rule analysis failed")
    return analysis


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class OperationRequest(RequestModel):
    method: str = Field(min_length=1)
    parameters: Optional[dict[str, Any]] = None


class ProcessOperationRequest(OperationRequest):
    auto_execute: bool = True
    depends_on: list[str] = Field(default_factory=list)


class BatchConfidenceRequest(RequestModel):
    operations: list[OperationRequest] = Field(min_length=1)


class EmptyRequest(RequestModel):
    pass


class ReviewQueueRequest(RequestModel):
    limit: int = Field(default=20, ge=1)


class SubmitReviewRequest(RequestModel):
    review_id: str = Field(min_length=1)
    decision: str = Field(min_length=1)
    modified_parameters: Optional[dict[str, Any]] = None
    notes: Optional[str] = None


class FeedbackHistoryRequest(RequestModel):
    limit: int = Field(default=50, ge=1)
    method_name: Optional[str] = None


class SessionContextRequest(RequestModel):
    start_new: bool = False
    end_current: bool = False
    project_name: Optional[str] = None
    project_path: Optional[str] = None
    project_rules: dict[str, str] = Field(default_factory=dict)
    terminology: dict[str, str] = Field(default_factory=dict)


class OperationIdRequest(RequestModel):
    operation_id: str = Field(min_length=1)


class ExecutableRulesRequest(RequestModel):
    category: Optional[str] = None
    project_type: Optional[str] = None


class SuggestNextStepsRequest(RequestModel):
    max_suggestions: int = Field(default=5, ge=1)
    include_completed: bool = False


class SheetPatternRequest(RequestModel):
    rule_id: str = Field(min_length=1)
    firm_name: Optional[str] = None


class SetThresholdRequest(RequestModel):
    method_name: str = Field(min_length=1)
    high: Optional[float] = None
    medium: Optional[float] = None
    low: Optional[float] = None


# ---------------------------------------------------------------------------
# Confidence & execution
# ---------------------------------------------------------------------------

def process_operation(ctx: "GatekeeperContext", req: ProcessOperationRequest) -> dict[str, Any]:
    result = ctx.orchestrator.process_operation(
        req.method, req.parameters, auto_execute=req.auto_execute, depends_on=req.depends_on,
    )
    response: dict[str, Any] = {
        "success": True,
        "envelope": envelope_payload(result.envelope),
        "confidenceLevel": result.envelope.level.value,
        "executed": result.executed,
        "inReview": result.in_review,
    }
    if result.review_item is not None:
        response["reviewId"] = result.review_item.review_id
        response["reason"] = result.review_item.reason
    if result.warnings:
        response["warnings"] = list(result.warnings)
    return response


def batch_confidence(ctx: "GatekeeperContext", req: BatchConfidenceRequest) -> dict[str, Any]:
    results: list[dict[str, Any]] = []
    counts = {level: 0 for level in ConfidenceLevel}
    for op in req.operations:
        try:
            envelope = ctx.orchestrator.calculate_confidence(op.method, op.parameters)
        except GatekeeperError as e:
            results.append({"method": op.method, "error": str(e), "errorType": e.error_type})
            continue
        counts[envelope.level] += 1
        results.append({
            "method": op.method,
            "confidence": envelope.overall_confidence,
            "level": envelope.level.value,
            "factors": [
                {"name": f.name, "score": f.score, "weight": f.weight, "reason": f.reason}
                for f in envelope.factors
            ],
            "alternativeCount": len(envelope.alternatives),
        })
    return {
        "success": True,
        "operationCount": len(results),
        "results": results,
        "highConfidence": counts[ConfidenceLevel.HIGH],
        "mediumConfidence": counts[ConfidenceLevel.MEDIUM],
        "lowConfidence": counts[ConfidenceLevel.LOW],
    }


def force_execute(ctx: "GatekeeperContext", req: OperationRequest) -> dict[str, Any]:
    result = ctx.orchestrator.force_execute(req.method, req.parameters)
    response: dict[str, Any] = {
        "success": result.executed,
        "envelope": envelope_payload(result.envelope),
        "warning": "Executed without confidence check",
    }
    if result.warnings:
        response["warnings"] = list(result.warnings)
    return response


def validate_operation(ctx: "GatekeeperContext", req: OperationRequest) -> dict[str, Any]:
    params = ctx.schemas.check_request(req.method, req.parameters)
    outcome = ctx.validator.validate(req.method, params)
    return {
        "success": True,
        "method": req.method,
        "validation": {
            "score": outcome.factor.score,
            "passed": outcome.passed,
            "reason": outcome.factor.reason,
            "factorName": outcome.factor.name,
            "weight": outcome.factor.weight,
            "violations": list(outcome.violations),
            "alternatives": [
                {"description": a.description, "parameters": a.parameters, "confidence": a.confidence}
                for a in outcome.alternatives
            ],
        },
    }


def get_validation_rules(ctx: "GatekeeperContext", req: EmptyRequest) -> dict[str, Any]:
    return {
        "success": True,
        "validationEnabled": True,
        "rules": {
            category: {to_camel(key): value for key, value in rules.items()}
            for category, rules in ctx.validator.rules.items()
        },
    }


def verify_execution(ctx: "GatekeeperContext", req: OperationIdRequest) -> dict[str, Any]:
    envelope, report = ctx.orchestrator.verify(req.operation_id)
    return {
        "success": True,
        "operationId": req.operation_id,
        "verification": verification_payload(report),
        "newStatus": envelope.status.value,
    }


# ---------------------------------------------------------------------------
# Review & feedback
# ---------------------------------------------------------------------------

def queue_status(ctx: "GatekeeperContext", req: EmptyRequest) -> dict[str, Any]:
    stats = ctx.orchestrator.queue_stats()
    feedback = ctx.orchestrator.feedback_stats()
    gk = ctx.config.gatekeeper
    return {
        "success": True,
        "reviewQueue": {
            "total": stats.total_items,
            "pending": stats.pending_items,
            "approved": stats.approved_items,
            "modified": stats.modified_items,
            "rejected": stats.rejected_items,
            "skipped": stats.skipped_items,
            "expired": stats.expired_items,
            "averageConfidence": stats.average_confidence,
            "oldestPending": _iso(stats.oldest_pending),
        },
        "feedback": {
            "totalRecords": feedback.total_feedback,
            "accuracyRate": feedback.accuracy_rate,
            "patternCount": feedback.pattern_count,
        },
        "configuration": {
            "enabled": gk.enabled,
            "highThreshold": gk.thresholds.high,
            "mediumThreshold": gk.thresholds.medium,
            "maxPasses": gk.multi_pass.max_passes,
        },
        "events": ctx.events.snapshot(),
    }


def get_review_queue(ctx: "GatekeeperContext", req: ReviewQueueRequest) -> dict[str, Any]:
    items = ctx.orchestrator.get_pending_reviews(req.limit)
    return {
        "success": True,
        "count": len(items),
        "items": [review_item_payload(item) for item in items],
    }


def submit_review(ctx: "GatekeeperContext", req: SubmitReviewRequest) -> dict[str, Any]:
    try:
        decision = ReviewDecision.parse(req.decision)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    outcome = ctx.orchestrator.submit_review(
        req.review_id, decision, req.modified_parameters, req.notes,
    )
    execution = None
    if decision in (ReviewDecision.APPROVE, ReviewDecision.MODIFY):
        execution = {"executed": outcome.executed, "result": outcome.envelope.result}
    return {
        "success": True,
        "reviewId": req.review_id,
        "decision": decision.value,
        "operationId": outcome.envelope.operation_id,
        "newStatus": outcome.envelope.status.value,
        "execution": execution,
        "feedbackRecorded": outcome.feedback is not None,
    }


def feedback_history(ctx: "GatekeeperContext", req: FeedbackHistoryRequest) -> dict[str, Any]:
    records = ctx.learner.get_history(req.limit, req.method_name)
    stats = ctx.learner.get_stats()
    return {
        "success": True,
        "stats": {
            "totalFeedback": stats.total_feedback,
            "totalCorrect": stats.total_correct,
            "accuracyRate": stats.accuracy_rate,
            "patternCount": stats.pattern_count,
        },
        "records": [
            {
                "feedbackId": r.feedback_id,
                "operationId": r.operation_id,
                "methodName": r.method_name,
                "originalConfidence": r.original_confidence,
                "originalLevel": r.original_level.value,
                "humanDecision": r.human_decision.value,
                "aiWasCorrect": r.ai_was_correct,
                "recordedAt": _iso(r.recorded_at),
            }
            for r in records
        ],
    }


def confidence_stats(ctx: "GatekeeperContext", req: EmptyRequest) -> dict[str, Any]:
    feedback = ctx.orchestrator.feedback_stats()
    queue = ctx.orchestrator.queue_stats()
    gk = ctx.config.gatekeeper
    return {
        "success": True,
        "overall": {
            "totalFeedback": feedback.total_feedback,
            "totalCorrect": feedback.total_correct,
            "accuracyRate": feedback.accuracy_rate,
            "patternCount": feedback.pattern_count,
        },
        "topMethods": [
            {
                "methodName": m.method_name,
                "total": m.total,
                "correct": m.correct,
                "accuracyRate": round(m.accuracy_rate, 4),
                "adjustment": ctx.learner.adjustment_for(m.method_name),
            }
            for m in feedback.top_methods
        ],
        "thresholds": _thresholds(gk.thresholds),
        "operationThresholds": {
            name: _thresholds(ts) for name, ts in sorted(gk.operation_thresholds.items())
        },
        "queue": {
            "pending": queue.pending_items,
            "averageConfidence": queue.average_confidence,
        },
    }


def session_context(ctx: "GatekeeperContext", req: SessionContextRequest) -> dict[str, Any]:
    learner = ctx.learner

    if req.end_current and learner.current_session is not None:
        summary = learner.end_session()
        return {
            "success": True,
            "action": "ended",
            "outcome": {
                "sessionId": summary.session_id,
                "projectName": summary.project_name,
                "patternCount": summary.pattern_count,
                "ruleCount": summary.rule_count,
                "terminologyCount": summary.terminology_count,
                "durationSeconds": summary.duration_seconds,
                "endedAt": _iso(summary.ended_at),
            },
        }

    action = None
    if req.start_new:
        learner.start_session(req.project_name, req.project_path)
        action = "started"
    for key, value in req.project_rules.items():
        learner.record_project_rule(key, value)
    for term, meaning in req.terminology.items():
        learner.record_terminology(term, meaning)
    if action is None and (req.project_rules or req.terminology):
        action = "updated"

    session = learner.current_session
    if session is None:
        return {
            "success": True,
            "hasActiveSession": False,
            "message": "No active session. Use startNew=true to start one.",
        }
    response: dict[str, Any] = {
        "success": True,
        "hasActiveSession": True,
        "session": _session_payload(session),
    }
    if action:
        response["action"] = action
    return response


# ---------------------------------------------------------------------------
# Configuration & workflow
# ---------------------------------------------------------------------------

def get_configuration(ctx: "GatekeeperContext", req: EmptyRequest) -> dict[str, Any]:
    gk = ctx.config.gatekeeper
    return {
        "success": True,
        "enabled": gk.enabled,
        "thresholds": _thresholds(gk.thresholds),
        "operationThresholds": {
            name: _thresholds(ts) for name, ts in sorted(gk.operation_thresholds.items())
        },
        "rejectBelowLow": gk.reject_below_low,
        "multiPass": {
            "maxPasses": gk.multi_pass.max_passes,
            "contextBoostPerPass": gk.multi_pass.context_boost_per_pass,
        },
        "reviewQueue": {
            "store": ctx.config.store.backend,
            "maxSize": gk.review_queue.max_size,
            "expireHours": gk.review_queue.expire_hours,
            "sweepIntervalSeconds": gk.review_queue.sweep_interval_seconds,
        },
        "feedback": {
            "minSamplesToLearn": gk.feedback.min_samples_to_learn,
            "maxAdjustment": gk.feedback.max_adjustment,
            "historyWindow": gk.feedback.history_window,
        },
        "execution": {"timeoutSeconds": gk.execution.timeout_seconds},
        "verification": {
            "autoVerify": gk.verification.auto_verify,
            "defaultTolerance": gk.verification.default_tolerance,
        },
        "rules": {
            "source": ctx.corpus.source,
            "loaded": ctx.corpus.loaded,
            "loadError": ctx.corpus.load_error,
        },
        "methods": ctx.schemas.names(),
    }


def set_threshold(ctx: "GatekeeperContext", req: SetThresholdRequest) -> dict[str, Any]:
    current = ctx.orchestrator.thresholds_for(req.method_name)
    try:
        updated = ThresholdSet(
            high=req.high if req.high is not None else current.high,
            medium=req.medium if req.medium is not None else current.medium,
            low=req.low if req.low is not None else current.low,
        )
    except PydanticValidationError as e:
        raise ConfigError(
            f"Invalid thresholds for {req.method_name}: 0 <= low <= medium <= high <= 1 required"
        ) from e
    ctx.orchestrator.set_thresholds(req.method_name, updated)
    return {
        "success": True,
        "methodName": req.method_name,
        "thresholds": _thresholds(updated),
    }


def get_dependency_graph(ctx: "GatekeeperContext", req: EmptyRequest) -> dict[str, Any]:
    graph = ctx.coordinator.get_dependency_graph()
    return {
        "success": True,
        "graph": {
            "nodeCount": len(graph["nodes"]),
            "edgeCount": len(graph["edges"]),
            "nodes": [{"id": n.node_id, "metadata": n.metadata} for n in graph["nodes"]],
            "edges": [
                {
                    "from": e.source,
                    "to": e.target,
                    "type": e.relation.value,
                    "strength": e.strength,
                    "notes": e.notes,
                }
                for e in graph["edges"]
            ],
        },
    }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def analyze_project_rules(ctx: "GatekeeperContext", req: EmptyRequest) -> dict[str, Any]:
    analysis = _analyze(ctx)
    return {
        "success": True,
        "projectName": analysis.project_name,
        "detection": {
            "projectType": analysis.project_type,
            "confidence": analysis.project_type_confidence,
            "firm": analysis.detected_firm,
            "firmPattern": analysis.firm_pattern,
            "indicators": list(analysis.indicators),
        },
        "rules": {
            "applicable": analysis.applicable_rule_count,
            "triggered": analysis.triggered_rule_count,
            "triggeredRules": [rule_payload(r) for r in analysis.triggered_rules],
        },
        "suggestedActions": [action_payload(a) for a in analysis.suggested_actions],
    }


def get_executable_rules(ctx: "GatekeeperContext", req: ExecutableRulesRequest) -> dict[str, Any]:
    corpus = ctx.corpus
    if not corpus.loaded:
        raise ConfigError(f"No rules loaded: {corpus.load_error}")
    rules = ctx.evaluator.get_executable_rules(req.category, req.project_type)
    return {
        "success": True,
        "version": corpus.version,
        "generatedAt": corpus.generated_at,
        "totalRules": corpus.total_rules,
        "filteredCount": len(rules),
        "rules": [rule_payload(r) for r in rules],
        "firmPatterns": corpus.firm_patterns_payload(),
        "projectTypeDetection": corpus.project_types,
    }


def suggest_next_steps(ctx: "GatekeeperContext", req: SuggestNextStepsRequest) -> dict[str, Any]:
    analysis = _analyze(ctx)
    candidates = [(action, False) for action in analysis.suggested_actions]
    if req.include_completed:
        triggered = {r.rule_id for r in analysis.triggered_rules}
        for rule in ctx.evaluator.applicable_rules(analysis.project_type):
            if rule.rule_id not in triggered:
                candidates.append((ctx.evaluator.suggestion_for(rule), True))

    # Stable sort: equal confidence keeps corpus order.
    candidates.sort(key=lambda pair: pair[0].confidence, reverse=True)
    chosen = candidates[:req.max_suggestions]

    steps = []
    for priority, (action, completed) in enumerate(chosen, start=1):
        sheet_number = render_example(action.sheet_pattern, analysis.detected_firm)
        step = action_payload(action)
        step.update({
            "priority": priority,
            "completed": completed,
            "example": (
                {"sheetNumber": sheet_number, "sheetName": render_naming(action.naming_pattern)}
                if sheet_number else None
            ),
        })
        steps.append(step)

    if steps:
        message = f"Found {len(steps)} suggested actions based on project type '{analysis.project_type}'"
    else:
        message = "No specific suggestions - project may be complete or type not fully detected"
    return {
        "success": True,
        "projectType": analysis.project_type,
        "firm": analysis.detected_firm,
        "firmPattern": analysis.firm_pattern,
        "suggestionCount": len(steps),
        "nextSteps": steps,
        "message": message,
    }


def get_sheet_pattern(ctx: "GatekeeperContext", req: SheetPatternRequest) -> dict[str, Any]:
    pattern = ctx.evaluator.get_sheet_pattern(req.rule_id, req.firm_name)
    if pattern is None:
        raise NotFoundError(f"No pattern found for rule '{req.rule_id}'")
    firm = req.firm_name or ctx.evaluator.detected_firm or "default"
    return {
        "success": True,
        "ruleId": req.rule_id,
        "firmName": firm,
        "sheetPattern": pattern,
        "example": render_example(pattern, firm),
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ENTRY_POINTS: list[MethodEntry] = [
    MethodEntry("process-operation", process_operation, ProcessOperationRequest,
                description="Score an operation and execute, queue or reject it"),
    MethodEntry("batch-confidence", batch_confidence, BatchConfidenceRequest,
                description="Score many operations without side effects"),
    MethodEntry("queue-status", queue_status, EmptyRequest),
    MethodEntry("get-review-queue", get_review_queue, ReviewQueueRequest),
    MethodEntry("submit-review", submit_review, SubmitReviewRequest,
                description="Approve, modify, reject or skip a queued operation"),
    MethodEntry("feedback-history", feedback_history, FeedbackHistoryRequest),
    MethodEntry("confidence-stats", confidence_stats, EmptyRequest),
    MethodEntry("force-execute", force_execute, OperationRequest,
                description="Execute without the confidence gate"),
    MethodEntry("get-configuration", get_configuration, EmptyRequest, requires_enabled=False),
    MethodEntry("set-threshold", set_threshold, SetThresholdRequest),
    MethodEntry("validate-operation", validate_operation, OperationRequest),
    MethodEntry("get-validation-rules", get_validation_rules, EmptyRequest,
                requires_enabled=False),
    MethodEntry("get-dependency-graph", get_dependency_graph, EmptyRequest),
    MethodEntry("session-context", session_context, SessionContextRequest),
    MethodEntry("verify-execution", verify_execution, OperationIdRequest),
    MethodEntry("analyze-project-rules", analyze_project_rules, EmptyRequest,
                requires_enabled=False),
    MethodEntry("get-executable-rules", get_executable_rules, ExecutableRulesRequest,
                requires_enabled=False),
    MethodEntry("suggest-next-steps", suggest_next_steps, SuggestNextStepsRequest,
                requires_enabled=False),
    MethodEntry("get-sheet-pattern", get_sheet_pattern, SheetPatternRequest,
                requires_enabled=False),
]


def default_registry() -> MethodRegistry:
    return MethodRegistry(list(ENTRY_POINTS))
