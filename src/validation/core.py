"""Audit infrastructure shared by the regression auditor, weight verifier and accuracy tester.

Every audit run moves through a small state machine:

    NOT_STARTED -> IN_PROGRESS -> COMPLETED
                               -> FAILED

Any other transition raises ValueError. An auditor's ``validate()`` catches
failures of the component under audit at its boundary and returns a failed
result carrying one critical error; ``run()`` does the same for anything
else ``validate()`` raises, so a run always ends COMPLETED or FAILED.

Scores start at 100 and lose points per finding:

    | Finding           | Penalty |
    |-------------------|---------|
    | critical error    | 50      |
    | high error        | 25      |
    | medium error      | 10      |
    | low error         | 5       |
    | warning           | 2       |
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np

from config.settings import Settings

logger = logging.getLogger(__name__)

MAX_HISTORY = 1000
WARNING_PENALTY = 2.0


class AuditStatus(Enum):
    """Lifecycle of one audit run."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    AuditStatus.NOT_STARTED: {AuditStatus.IN_PROGRESS},
    AuditStatus.IN_PROGRESS: {AuditStatus.COMPLETED, AuditStatus.FAILED},
    AuditStatus.COMPLETED: set(),
    AuditStatus.FAILED: set(),
}


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_PENALTY = {
    Severity.CRITICAL: 50.0,
    Severity.HIGH: 25.0,
    Severity.MEDIUM: 10.0,
    Severity.LOW: 5.0,
}


def clamp_score(score: float) -> float:
    return float(np.clip(score, 0.0, 100.0))


@dataclass
class ValidationIssue:
    """An error found by an audit."""
    code: str
    message: str
    severity: Severity = Severity.MEDIUM
    component: str = ""
    details: dict = field(default_factory=dict)


@dataclass
class ValidationWarning:
    """A non-fatal finding."""
    code: str
    message: str
    component: str = ""
    details: dict = field(default_factory=dict)


@dataclass
class AuditResult:
    """Common fields of every audit report.

    ``score`` is kept within [0, 100]; adding any error marks the result invalid.
    """

    is_valid: bool = True
    score: float = 100.0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.score = clamp_score(self.score)

    @property
    def component(self) -> str:
        return self.metadata.get("component", "")

    @property
    def critical_errors(self) -> list[ValidationIssue]:
        return [e for e in self.errors if e.severity == Severity.CRITICAL]

    def set_score(self, score: float) -> None:
        self.score = clamp_score(score)

    def add_error(
        self,
        code: str,
        message: str,
        severity: Severity = Severity.MEDIUM,
        details: Optional[dict] = None,
    ) -> ValidationIssue:
        issue = ValidationIssue(code, message, severity, self.component, details or {})
        self.errors.append(issue)
        self.is_valid = False
        self.set_score(self.score - SEVERITY_PENALTY[severity])
        return issue

    def add_warning(self, code: str, message: str, details: Optional[dict] = None) -> ValidationWarning:
        warning = ValidationWarning(code, message, self.component, details or {})
        self.warnings.append(warning)
        self.set_score(self.score - WARNING_PENALTY)
        return warning

    def add_recommendation(self, recommendation: str) -> None:
        self.recommendations.append(recommendation)


@dataclass
class AuditRun:
    """One execution of an auditor, tracked through its status transitions."""

    component: str
    season: int
    status: AuditStatus = AuditStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[AuditResult] = None

    def transition(self, new_status: AuditStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Invalid audit transition for {self.component}: "
                f"{self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    def start(self) -> None:
        self.transition(AuditStatus.IN_PROGRESS)
        self.started_at = datetime.now()

    def finish(self, result: AuditResult) -> None:
        """Record the result; a result with a critical error fails the run."""
        self.result = result
        self.finished_at = datetime.now()
        if result.critical_errors:
            self.transition(AuditStatus.FAILED)
        else:
            self.transition(AuditStatus.COMPLETED)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def __repr__(self) -> str:
        score = f"{self.result.score:.0f}" if self.result is not None else "-"
        return f"AuditRun({self.component}, season={self.season}, status={self.status.value}, score={score})"


class AuditLog:
    """Bounded per-component history of audit results."""

    def __init__(self, max_history: int = MAX_HISTORY):
        self.max_history = max_history
        self._history: dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_history))

    def record(self, component: str, result: AuditResult) -> None:
        self._history[component].append(result)
        for error in result.errors:
            logger.warning(f"[{component}] [{error.severity.value}] {error.code}: {error.message}")
        for warning in result.warnings:
            logger.warning(f"[{component}] {warning.code}: {warning.message}")
        logger.info(
            f"[{component}] valid={result.is_valid}, score={result.score:.1f}, "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )

    def history(self, component: str, limit: Optional[int] = None) -> list[AuditResult]:
        entries = list(self._history.get(component, ()))
        if limit is not None and limit > 0:
            return entries[-limit:]
        return entries

    def latest(self, component: str) -> Optional[AuditResult]:
        entries = self._history.get(component)
        return entries[-1] if entries else None

    def clear(self, component: Optional[str] = None) -> None:
        if component is None:
            self._history.clear()
        else:
            self._history.pop(component, None)


class BaseAuditor:
    """Shared plumbing for auditors.

    Subclasses set ``component`` and implement ``validate(season, ...)``.
    """

    component = "audit"

    def __init__(self, settings: Optional[Settings] = None, audit_log: Optional[AuditLog] = None):
        self.settings = settings or Settings()
        self.audit_log = audit_log or AuditLog()

    def base_metadata(self, season: int) -> dict:
        return {"component": self.component, "season": season}

    def failure(self, result: AuditResult, code: str, exc: Exception) -> AuditResult:
        """Turn an exception from the audited component into a failed result."""
        logger.error(f"[{self.component}] audit failed: {exc}")
        result.add_error(code, f"{self.component} audit failed: {exc}", Severity.CRITICAL, {"error": type(exc).__name__})
        result.is_valid = False
        return result

    def log_result(self, result: AuditResult) -> None:
        self.audit_log.record(self.component, result)

    def validate(self, season: int, *args, **kwargs) -> AuditResult:
        raise NotImplementedError

    def run(self, season: int, *args, **kwargs) -> AuditRun:
        """Execute validate() inside a tracked AuditRun."""
        run = AuditRun(component=self.component, season=season)
        run.start()
        try:
            result = self.validate(season, *args, **kwargs)
        except NotImplementedError:
            raise
        except Exception as e:
            result = self.failure(AuditResult(metadata=self.base_metadata(season)), "AUDIT_RUN_FAILED", e)
            self.log_result(result)
        run.finish(result)
        logger.info(f"{run}")
        return run
