"""Tests for gatekeeper/methods — entry-point registry and response payloads."""

import pytest

from gatekeeper.core.config import AppConfig, GatekeeperConfig, ReviewQueueConfig
from gatekeeper.core.exceptions import DatabaseError
from gatekeeper.core.models import ThresholdSet
from gatekeeper.db.store import MemoryStore
from gatekeeper.methods.handlers import ENTRY_POINTS, default_registry
from gatekeeper.methods.registry import MethodEntry, MethodRegistry

from tests.conftest import FakeHost, build_context


THRESHOLDS = ThresholdSet(high=0.9, medium=0.5, low=0.3)


class BrokenEnvelopeStore(MemoryStore):
    """Accepts everything except envelope writes."""

    def save_envelope(self, envelope):
        raise DatabaseError("disk full")


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def make_context(host):
    contexts = []

    def factory(score=None, fake_host=None, **kwargs):
        ctx = build_context(fake_host or host, score=score, **kwargs)
        contexts.append(ctx)
        return ctx

    yield factory
    for ctx in contexts:
        ctx.close()


def _queue_one(registry, ctx, length=10):
    response = registry.call(ctx, "process-operation", {
        "method": "createWall", "parameters": {"length": length},
    })
    assert response["success"], response
    assert response["inReview"]
    return response


class TestRegistry:
    def test_every_entry_point_registered(self, registry):
        assert len(registry.names()) == 19
        assert registry.names() == sorted(e.name for e in ENTRY_POINTS)

    def test_duplicate_registration_rejected(self):
        entry = ENTRY_POINTS[0]
        registry = MethodRegistry([entry])
        with pytest.raises(ValueError):
            registry.register(entry)

    def test_unknown_method(self, registry, context):
        response = registry.call(context, "make-coffee", {})
        assert response == {
            "success": False,
            "error": "Unknown method: make-coffee",
            "errorType": "NotFoundError",
        }

    def test_unexpected_field_rejected(self, registry, context):
        response = registry.call(context, "queue-status", {"verbose": True})
        assert not response["success"]
        assert response["errorType"] == "ValidationError"
        assert "verbose" in response["error"]

    def test_missing_required_field(self, registry, context):
        response = registry.call(context, "submit-review", {"decision": "approve"})
        assert response["errorType"] == "ValidationError"
        assert "reviewId" in response["error"]

    def test_non_object_request(self, registry, context):
        response = registry.call(context, "queue-status", ["not", "an", "object"])
        assert response["errorType"] == "ValidationError"

    def test_snake_case_names_also_accepted(self, registry, context):
        response = registry.call(context, "get-review-queue", {"limit": 5})
        assert response["success"]
        response = registry.call(context, "feedback-history", {"method_name": "createWall"})
        assert response["success"]

    def test_unhandled_error_becomes_internal_error(self, context):
        def explode(ctx, req):
            raise RuntimeError("boom")

        registry = MethodRegistry([MethodEntry("explode", explode, ENTRY_POINTS[2].request_model)])
        response = registry.call(context, "explode", {})
        assert response["errorType"] == "InternalError"
        assert "boom" in response["error"]


class TestFeatureGate:
    @pytest.fixture
    def disabled(self, make_context):
        return make_context(config=AppConfig(gatekeeper=GatekeeperConfig(enabled=False)))

    def test_gated_entry_point_refused(self, registry, disabled):
        response = registry.call(disabled, "process-operation", {
            "method": "createWall", "parameters": {"length": 10},
        })
        assert not response["success"]
        assert response["errorType"] == "ConfigurationError"

    @pytest.mark.parametrize("name", ["get-configuration", "get-validation-rules", "get-executable-rules"])
    def test_ungated_entry_points_still_work(self, registry, disabled, name):
        response = registry.call(disabled, name, {})
        assert response["success"], response

    def test_configuration_reports_disabled(self, registry, disabled):
        assert registry.call(disabled, "get-configuration")["enabled"] is False


class TestProcessAndReview:
    def test_process_executes(self, registry, make_context, host):
        ctx = make_context(score=0.95)
        response = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10, "height": 9},
        })
        assert response["success"]
        assert response["executed"] is True
        assert response["confidenceLevel"] == "High"
        envelope = response["envelope"]
        assert envelope["status"] == "Executed"
        assert envelope["result"] == {"elementId": "1001"}
        assert envelope["executedParameters"] == {"length": 10, "height": 9}
        assert "reviewId" not in response

    def test_process_queues_with_reason(self, registry, make_context):
        ctx = make_context(score=0.6)
        response = _queue_one(registry, ctx)
        assert response["reason"] == "medium confidence"
        assert response["envelope"]["status"] == "InReview"

    def test_camel_case_options(self, registry, make_context, host):
        ctx = make_context(score=0.95)
        first = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10}, "autoExecute": False,
        })
        assert first["inReview"]
        assert first["reason"] == "high confidence (auto-execute disabled)"
        second = registry.call(ctx, "process-operation", {
            "method": "createWall",
            "parameters": {"length": 12},
            "autoExecute": False,
            "dependsOn": [first["envelope"]["operationId"], "ghost"],
        })
        assert second["envelope"]["dependsOn"] == [first["envelope"]["operationId"], "ghost"]
        assert len(second["warnings"]) == 1
        assert host.calls == []

    def test_unknown_parameter(self, registry, make_context):
        ctx = make_context(score=0.95)
        response = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10, "colour": "red"},
        })
        assert response["errorType"] == "ValidationError"
        assert "colour" in response["error"]

    def test_queue_full(self, registry, make_context):
        config = AppConfig(gatekeeper=GatekeeperConfig(
            thresholds=THRESHOLDS, review_queue=ReviewQueueConfig(max_size=1),
        ))
        ctx = make_context(score=0.6, config=config)
        _queue_one(registry, ctx)
        response = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 11},
        })
        assert response["errorType"] == "ConfigurationError"

    def test_review_queue_listing(self, registry, make_context):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "get-review-queue", {"limit": 10})
        assert response["count"] == 1
        item = response["items"][0]
        assert item["reviewId"] == queued["reviewId"]
        assert item["operationId"] == queued["envelope"]["operationId"]
        assert item["methodName"] == "createWall"
        assert item["reason"] == "medium confidence"
        assert [o["id"] for o in item["options"]][:1] == ["approve"]
        assert item["expiresAt"] > item["queuedAt"]

    def test_submit_approve(self, registry, make_context, host):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "submit-review", {
            "reviewId": queued["reviewId"], "decision": "APPROVE",
        })
        assert response["success"]
        assert response["decision"] == "Approve"
        assert response["newStatus"] == "Executed"
        assert response["execution"]["executed"] is True
        assert response["feedbackRecorded"] is True
        assert len(host.calls) == 1

    def test_submit_modify(self, registry, make_context, host):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "submit-review", {
            "reviewId": queued["reviewId"],
            "decision": "modify",
            "modifiedParameters": {"length": 14},
        })
        assert response["newStatus"] == "Executed"
        assert host.calls == [("createWall", {"length": 14})]

    def test_submit_reject_then_resubmit(self, registry, make_context):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "submit-review", {
            "reviewId": queued["reviewId"], "decision": "reject", "notes": "wrong level",
        })
        assert response["newStatus"] == "Rejected"
        assert response["execution"] is None
        again = registry.call(ctx, "submit-review", {
            "reviewId": queued["reviewId"], "decision": "approve",
        })
        assert again["errorType"] == "NotFoundError"

    def test_submit_skip(self, registry, make_context):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "submit-review", {
            "reviewId": queued["reviewId"], "decision": "skip",
        })
        assert response["newStatus"] == "Skipped"
        assert response["feedbackRecorded"] is False

    def test_submit_invalid_decision(self, registry, make_context):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "submit-review", {
            "reviewId": queued["reviewId"], "decision": "maybe",
        })
        assert response["errorType"] == "ValidationError"
        assert "Invalid decision" in response["error"]
        # Item remains pending
        assert registry.call(ctx, "get-review-queue")["count"] == 1

    def test_host_failure_carries_operation_id(self, registry, make_context):
        failing = FakeHost()
        failing.fail_with = "Level not found"
        ctx = make_context(score=0.95, fake_host=failing)
        response = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10},
        })
        assert response["errorType"] == "HostExecutionError"
        assert response["error"] == "Level not found"
        assert response["operationId"]

    def test_force_execute(self, registry, make_context, host):
        ctx = make_context(score=0.1)
        response = registry.call(ctx, "force-execute", {
            "method": "createWall", "parameters": {"length": 10},
        })
        assert response["success"]
        assert response["warning"] == "Executed without confidence check"
        assert response["envelope"]["overallConfidence"] == 0.1
        assert len(host.calls) == 1


class TestScoring:
    def test_batch_confidence(self, registry, context):
        response = registry.call(context, "batch-confidence", {"operations": [
            {"method": "createWall", "parameters": {"length": 10, "height": 9, "thickness": 6}},
            {"method": "placeDoor", "parameters": {"width": 31}},
            {"method": "createWall", "parameters": {"length": 10, "colour": "red"}},
        ]})
        assert response["success"]
        assert response["operationCount"] == 3
        assert response["results"][2]["errorType"] == "ValidationError"
        levels = response["highConfidence"] + response["mediumConfidence"] + response["lowConfidence"]
        assert levels == 2
        assert context.store.list_envelopes() == []

    def test_batch_requires_operations(self, registry, context):
        response = registry.call(context, "batch-confidence", {"operations": []})
        assert response["errorType"] == "ValidationError"

    def test_validate_operation(self, registry, context):
        response = registry.call(context, "validate-operation", {
            "method": "placeDoor", "parameters": {"width": 31},
        })
        validation = response["validation"]
        assert validation["passed"] is False
        assert validation["violations"]
        assert validation["alternatives"][0]["parameters"] == {"width": 30}

    def test_validation_rules_are_camel_case(self, registry, context):
        response = registry.call(context, "get-validation-rules")
        assert response["rules"]["walls"]["minLengthInches"] == 6
        assert response["rules"]["doors"]["standardWidthsInches"] == [28, 30, 32, 34, 36]

    def test_set_threshold(self, registry, make_context):
        ctx = make_context(score=0.6)
        response = registry.call(ctx, "set-threshold", {"methodName": "createWall", "high": 0.55})
        assert response["thresholds"] == {"high": 0.55, "medium": 0.5, "low": 0.3}
        executed = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10},
        })
        assert executed["executed"] is True
        config = registry.call(ctx, "get-configuration")
        assert config["operationThresholds"]["createWall"]["high"] == 0.55

    def test_set_threshold_rejects_inverted_order(self, registry, context):
        response = registry.call(context, "set-threshold", {"methodName": "createWall", "low": 0.95})
        assert response["errorType"] == "ConfigurationError"

    def test_multi_pass_settings_reported(self, registry, context):
        config = registry.call(context, "get-configuration")
        assert config["multiPass"] == {"maxPasses": 3, "contextBoostPerPass": 0.05}
        status = registry.call(context, "queue-status")
        assert status["configuration"]["maxPasses"] == 3


class TestStatsAndHistory:
    def test_queue_status(self, registry, make_context):
        ctx = make_context(score=0.6)
        _queue_one(registry, ctx)
        response = registry.call(ctx, "queue-status")
        assert response["reviewQueue"]["pending"] == 1
        assert response["reviewQueue"]["averageConfidence"] == 0.6
        assert response["configuration"]["highThreshold"] == 0.9
        assert response["events"]["operation_queued"] == 1

    def test_feedback_history_and_stats(self, registry, make_context):
        ctx = make_context(score=0.6)
        for length in (10, 11):
            queued = _queue_one(registry, ctx, length)
            registry.call(ctx, "submit-review", {
                "reviewId": queued["reviewId"], "decision": "approve",
            })
        history = registry.call(ctx, "feedback-history", {"methodName": "createWall"})
        assert history["stats"]["totalFeedback"] == 2
        assert len(history["records"]) == 2
        assert history["records"][0]["humanDecision"] == "Approve"
        assert history["records"][0]["originalLevel"] == "Medium"

        stats = registry.call(ctx, "confidence-stats")
        assert stats["overall"]["totalFeedback"] == 2
        assert stats["topMethods"][0]["methodName"] == "createWall"
        assert stats["topMethods"][0]["adjustment"] == 0.0
        assert stats["thresholds"] == {"high": 0.9, "medium": 0.5, "low": 0.3}


class TestSessionContext:
    def test_no_session(self, registry, context):
        response = registry.call(context, "session-context")
        assert response["hasActiveSession"] is False

    def test_lifecycle(self, registry, context):
        started = registry.call(context, "session-context", {
            "startNew": True,
            "projectName": "Harbor View",
            "projectRules": {"sheet_size": "ARCH D"},
            "terminology": {"ALS": "life safety plan"},
        })
        assert started["action"] == "started"
        assert started["session"]["projectName"] == "Harbor View"
        assert started["session"]["rules"] == {"sheet_size": "ARCH D"}
        assert started["session"]["terminologyCount"] == 1

        updated = registry.call(context, "session-context", {"terminology": {"RCP": "ceiling plan"}})
        assert updated["action"] == "updated"
        assert updated["session"]["terminologyCount"] == 2

        ended = registry.call(context, "session-context", {"endCurrent": True})
        assert ended["action"] == "ended"
        assert ended["outcome"]["ruleCount"] == 1
        assert ended["outcome"]["terminologyCount"] == 2


class TestGraphAndVerification:
    def test_dependency_graph(self, registry, make_context):
        ctx = make_context(score=0.95)
        wall = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10},
        })
        registry.call(ctx, "process-operation", {
            "method": "placeDoor",
            "parameters": {"wallId": wall["envelope"]["result"]["elementId"], "width": 36},
            "dependsOn": [wall["envelope"]["operationId"]],
        })
        graph = registry.call(ctx, "get-dependency-graph")["graph"]
        assert graph["nodeCount"] == 2
        relations = sorted(e["type"] for e in graph["edges"])
        assert relations == ["references", "requires"]

    def test_verify_execution(self, registry, make_context):
        ctx = make_context(score=0.95)
        executed = registry.call(ctx, "process-operation", {
            "method": "createWall", "parameters": {"length": 10, "height": 9},
        })
        response = registry.call(ctx, "verify-execution", {
            "operationId": executed["envelope"]["operationId"],
        })
        assert response["newStatus"] == "Verified"
        verification = response["verification"]
        assert verification["passed"] is True
        assert verification["totalChecks"] == 3
        assert verification["failures"] == []

    def test_verify_unknown_operation(self, registry, context):
        response = registry.call(context, "verify-execution", {"operationId": "nope"})
        assert response["errorType"] == "NotFoundError"

    def test_verify_before_execution(self, registry, make_context):
        ctx = make_context(score=0.6)
        queued = _queue_one(registry, ctx)
        response = registry.call(ctx, "verify-execution", {
            "operationId": queued["envelope"]["operationId"],
        })
        assert response["errorType"] == "ValidationError"


class TestRulesEntryPoints:
    def test_analyze_project_rules(self, registry, context):
        response = registry.call(context, "analyze-project-rules")
        assert response["projectName"] == "Harbor View Apartments"
        assert response["detection"]["projectType"] == "multi_family"
        assert response["detection"]["firm"] == "SOP"
        assert response["rules"]["triggered"] == 3
        assert {a["ruleId"] for a in response["suggestedActions"]} == {
            "LIFE_SAFETY_PLANS", "UNIT_ENLARGED_PLANS", "DOOR_SCHEDULE",
        }

    def test_analyze_without_document(self, registry, make_context):
        ctx = make_context(fake_host=FakeHost(state=None))
        response = registry.call(ctx, "analyze-project-rules")
        assert response["errorType"] == "NoActiveContextError"
        assert response["error"] == "No active document"

    def test_executable_rules_filtered(self, registry, context):
        response = registry.call(context, "get-executable-rules", {"category": "SCHEDULES"})
        assert response["version"] == "1.2"
        assert response["totalRules"] == 5
        assert [r["ruleId"] for r in response["rules"]] == ["DOOR_SCHEDULE"]
        assert set(response["firmPatterns"]) == {"SOP", "ARKY", "BD"}

    def test_suggest_next_steps(self, registry, context):
        response = registry.call(context, "suggest-next-steps", {"maxSuggestions": 2})
        assert response["suggestionCount"] == 2
        assert [s["priority"] for s in response["nextSteps"]] == [1, 2]
        confidences = [s["confidence"] for s in response["nextSteps"]]
        assert confidences == sorted(confidences, reverse=True)
        assert all(not s["completed"] for s in response["nextSteps"])

    def test_suggest_including_completed(self, registry, context):
        response = registry.call(context, "suggest-next-steps", {
            "maxSuggestions": 10, "includeCompleted": True,
        })
        completed = [s["ruleId"] for s in response["nextSteps"] if s["completed"]]
        assert completed == ["BUILDING_ELEVATIONS"]

    def test_sheet_pattern_for_detected_firm(self, registry, context):
        registry.call(context, "analyze-project-rules")
        response = registry.call(context, "get-sheet-pattern", {"ruleId": "LIFE_SAFETY_PLANS"})
        assert response["firmName"] == "SOP"
        assert response["sheetPattern"] == "ALS.{level}.1"
        assert response["example"] == "ALS.2.1"

    def test_sheet_pattern_explicit_firm(self, registry, context):
        response = registry.call(context, "get-sheet-pattern", {
            "ruleId": "LIFE_SAFETY_PLANS", "firmName": "BD",
        })
        assert response["sheetPattern"] == "LS{level}02"
        assert response["example"] == "LS202"

    def test_sheet_pattern_unknown_rule(self, registry, context):
        response = registry.call(context, "get-sheet-pattern", {"ruleId": "NOPE"})
        assert response["errorType"] == "NotFoundError"


class TestStorageWarnings:
    def test_failed_write_is_reported_not_raised(self, registry, host):
        ctx = build_context(host, score=0.6, store=BrokenEnvelopeStore())
        try:
            response = registry.call(ctx, "process-operation", {
                "method": "createWall", "parameters": {"length": 10},
            })
            assert response["success"]
            assert response["inReview"]
            assert any("disk full" in w for w in response["warnings"])
            # Drained: next call carries no stale warnings
            assert "warnings" not in registry.call(ctx, "get-review-queue")
        finally:
            ctx.close()
