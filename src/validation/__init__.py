"""Audit framework: regression consistency audit, weight verification and prediction accuracy testing."""

from .accuracy_tester import AccuracyTester, AccuracyTestResult
from .core import AuditLog, AuditResult, AuditRun, AuditStatus, Severity
from .regression_auditor import RegressionAuditor, RegressionValidationResult
from .weight_verifier import WeightVerificationResult, WeightVerifier

__all__ = [
    "AccuracyTester",
    "AccuracyTestResult",
    "AuditLog",
    "AuditResult",
    "AuditRun",
    "AuditStatus",
    "RegressionAuditor",
    "RegressionValidationResult",
    "Severity",
    "WeightVerificationResult",
    "WeightVerifier",
]
