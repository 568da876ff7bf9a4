"""Prometheus metrics shared by the workflow modules."""

from prometheus_client import Counter

from .config import get_settings

# Prefix for the workflow counters, e.g. grievance_otp_requests_total.
NAMESPACE = get_settings().metrics_namespace


OTP_REQUESTS = Counter(
    "otp_requests_total",
    "Login/OTP requests by outcome (code_sent, logged_in, rejected, delivery_failed)",
    ["outcome"],
    namespace=NAMESPACE,
)
OTP_VERIFICATIONS = Counter(
    "otp_verifications_total",
    "OTP verification attempts by outcome",
    ["outcome"],
    namespace=NAMESPACE,
)
COMPLAINTS_SUBMITTED = Counter(
    "complaints_submitted_total",
    "Complaints created, by classified priority",
    ["priority"],
    namespace=NAMESPACE,
)
CLASSIFIER_FALLBACKS = Counter(
    "classifier_fallbacks_total",
    "Classifier calls that failed or timed out and defaulted to normal",
    namespace=NAMESPACE,
)
ASSIGNMENT_CONFLICTS = Counter(
    "assignment_conflicts_total",
    "Assignments rejected because the worker was no longer available",
    namespace=NAMESPACE,
)
NOTIFICATION_FAILURES = Counter(
    "notification_failures_total",
    "Outbound notifications that could not be delivered",
    ["channel"],
    namespace=NAMESPACE,
)
WORKER_PROOFS_ATTACHED = Counter(
    "worker_proofs_attached_total",
    "Worker proof-of-completion photos attached to complaints",
    namespace=NAMESPACE,
)
WEBHOOK_IGNORED = Counter(
    "webhook_events_ignored_total",
    "Inbound WhatsApp webhook events that did not attach proof",
    ["reason"],
    namespace=NAMESPACE,
)
