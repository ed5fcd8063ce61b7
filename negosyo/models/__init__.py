from negosyo.models.creator import Creator
from negosyo.models.submission import (
    InterviewKind,
    Lead,
    LeadNote,
    Submission,
    SubmissionStatus,
    TranscriptionStatus,
)
from negosyo.models.ledger import Earning, PayoutMethod, Referral, Withdrawal
from negosyo.models.analytics import AnalyticsBucket
from negosyo.models.audit_log import AuditLog
from negosyo.models.outbox import Notification, OutboxEvent

__all__ = [
    "Creator",
    "Submission",
    "SubmissionStatus",
    "TranscriptionStatus",
    "InterviewKind",
    "Lead",
    "LeadNote",
    "Earning",
    "Withdrawal",
    "PayoutMethod",
    "Referral",
    "AnalyticsBucket",
    "AuditLog",
    "OutboxEvent",
    "Notification",
]
