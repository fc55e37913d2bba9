"""Tests for audit run tracking, result scoring and the audit log."""

import pytest

from src.validation.core import AuditLog, AuditResult, AuditRun, AuditStatus, BaseAuditor, Severity


class TestAuditRun:
    def test_happy_path(self):
        run = AuditRun(component="regression_analysis", season=2024)
        run.start()
        assert run.status == AuditStatus.IN_PROGRESS
        run.finish(AuditResult())
        assert run.status == AuditStatus.COMPLETED
        assert run.duration_seconds >= 0

    def test_critical_error_fails_run(self):
        run = AuditRun(component="prediction_accuracy", season=2024)
        run.start()
        result = AuditResult()
        result.add_error("BOOM", "it broke", Severity.CRITICAL)
        run.finish(result)
        assert run.status == AuditStatus.FAILED

    def test_invalid_transitions(self):
        run = AuditRun(component="x", season=2024)
        with pytest.raises(ValueError, match="not_started -> completed"):
            run.transition(AuditStatus.COMPLETED)
        run.start()
        run.finish(AuditResult())
        with pytest.raises(ValueError, match="Invalid audit transition"):
            run.start()

    def test_duration_before_finish(self):
        assert AuditRun(component="x", season=2024).duration_seconds is None


class TestAuditResult:
    """Scores start at 100 and lose points per finding."""

    @pytest.mark.parametrize(
        "severity,score",
        [(Severity.CRITICAL, 50.0), (Severity.HIGH, 75.0), (Severity.MEDIUM, 90.0), (Severity.LOW, 95.0)],
    )
    def test_error_penalties(self, severity, score):
        result = AuditResult()
        result.add_error("E", "error", severity)
        assert result.score == score
        assert not result.is_valid

    def test_warning_penalty_keeps_validity(self):
        result = AuditResult()
        result.add_warning("W", "careful")
        assert result.score == 98.0
        assert result.is_valid

    def test_score_never_negative(self):
        result = AuditResult()
        for _ in range(3):
            result.add_error("E", "bad", Severity.CRITICAL)
        assert result.score == 0.0
        result.set_score(250)
        assert result.score == 100.0

    def test_component_from_metadata(self):
        result = AuditResult(metadata={"component": "regression_analysis"})
        assert result.add_error("E", "x").component == "regression_analysis"


class TestAuditLog:
    def test_bounded_history(self):
        log = AuditLog(max_history=2)
        results = [AuditResult(score=s) for s in (10, 20, 30)]
        for r in results:
            log.record("a", r)
        assert log.history("a") == results[1:]
        assert log.latest("a") is results[2]
        assert log.history("a", limit=1) == [results[2]]

    def test_clear(self):
        log = AuditLog()
        log.record("a", AuditResult())
        log.record("b", AuditResult())
        log.clear("a")
        assert log.latest("a") is None
        assert log.latest("b") is not None
        log.clear()
        assert log.history("b") == []


class TestBaseAuditor:
    def test_run_wraps_validate(self):
        class Passing(BaseAuditor):
            component = "passing"

            def validate(self, season):
                result = AuditResult(metadata=self.base_metadata(season))
                self.log_result(result)
                return result

        auditor = Passing()
        run = auditor.run(2024)
        assert run.status == AuditStatus.COMPLETED
        assert run.result.metadata == {"component": "passing", "season": 2024}
        assert auditor.audit_log.latest("passing") is run.result

    def test_failure_helper(self):
        auditor = BaseAuditor()
        result = auditor.failure(AuditResult(), "FAILED", RuntimeError("no data"))
        assert not result.is_valid
        assert result.critical_errors[0].details == {"error": "RuntimeError"}
        assert "no data" in result.errors[0].message

    def test_unexpected_error_fails_run(self):
        class Broken(BaseAuditor):
            component = "broken"

            def validate(self, season):
                raise KeyError("scoring")

        auditor = Broken()
        run = auditor.run(2024)
        assert run.status == AuditStatus.FAILED
        assert run.finished_at is not None
        assert run.result.errors[0].code == "AUDIT_RUN_FAILED"
        assert run.result.metadata == {"component": "broken", "season": 2024}
        assert auditor.audit_log.latest("broken") is run.result

    def test_validate_not_implemented(self):
        with pytest.raises(NotImplementedError):
            BaseAuditor().run(2024)
