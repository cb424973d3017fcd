"""site_audit.runner: планировщик аудитов, политика повторов и интерфейс аудитора."""

from site_audit.runner.auditor import Auditor, LighthouseAuditor
from site_audit.runner.errors import AuditAttemptError, AuditError, AuditTimeoutError, is_transient_error
from site_audit.runner.models import AuditOutcome, AuditSummary, Device, Job, JobResult, JobState, MetricsSummary
from site_audit.runner.retry import RetryPolicy, run_with_retry
from site_audit.runner.scheduler import AuditScheduler

__all__ = [
    "AuditAttemptError",
    "AuditError",
    "AuditOutcome",
    "AuditScheduler",
    "AuditSummary",
    "AuditTimeoutError",
    "Auditor",
    "Device",
    "Job",
    "JobResult",
    "JobState",
    "LighthouseAuditor",
    "MetricsSummary",
    "RetryPolicy",
    "is_transient_error",
    "run_with_retry",
]
