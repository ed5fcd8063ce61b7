"""SHA-256 hash chain utilities for the tamper-evident audit log."""

import hashlib


def compute_audit_hash(
    prev_hash: str | None,
    action: str,
    actor_id: str | None,
    target_type: str,
    target_id: str,
    details_json: str,
    timestamp_iso: str,
) -> str:
    payload = "|".join([
        prev_hash or "GENESIS",
        action,
        actor_id or "SYSTEM",
        target_type,
        target_id,
        details_json,
        timestamp_iso,
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
