"""The current-submission pointer: which remote draft the device is working on.

Exactly one flow is tracked per device. The pointer is a closed set of
states rather than a string with a magic "not created yet" value:

* ``NoActiveDraft``: nothing in progress.
* ``PendingCreation(form)``: business info was captured offline; the draft
  will be created on the next reconnect.
* ``Remote(submission_id)``: the draft exists on the server.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class NoActiveDraft:
    pass


@dataclass(frozen=True)
class PendingCreation:
    form: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Remote:
    submission_id: str


SubmissionPointer = Union[NoActiveDraft, PendingCreation, Remote]


def pointer_to_json(pointer: SubmissionPointer) -> dict[str, Any]:
    if isinstance(pointer, Remote):
        return {"state": "remote", "submission_id": pointer.submission_id}
    if isinstance(pointer, PendingCreation):
        return {"state": "pending_creation", "form": dict(pointer.form)}
    if isinstance(pointer, NoActiveDraft):
        return {"state": "none"}
    raise TypeError(f"Not a submission pointer: {pointer!r}")


def pointer_from_json(data: dict[str, Any] | None) -> SubmissionPointer:
    """Decode a persisted pointer. Missing or unrecognised data means no active draft."""
    if not data:
        return NoActiveDraft()
    state = data.get("state")
    if state == "remote" and data.get("submission_id"):
        return Remote(str(data["submission_id"]))
    if state == "pending_creation":
        return PendingCreation(dict(data.get("form") or {}))
    return NoActiveDraft()


def remote_id(pointer: SubmissionPointer) -> str | None:
    return pointer.submission_id if isinstance(pointer, Remote) else None
