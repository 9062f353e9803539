from __future__ import annotations

"""Trigger evaluation.

CONTRACT
- Inputs: TriggerEvent {kind, ref, action, sha, head_sha, tag}
- Outputs (required):
  - TriggerPolicy.admits(event) -> bool
- Invariants:
  - Pure predicate, no side effects
  - push: branch must match the allow-list (exact name or fnmatch glob);
    tag pushes are never admitted
  - pull_request: action must be one of the configured lifecycle states
  - manual: always admitted while manual dispatch is enabled
- Failure:
  - None. Unmatched events are rejected, never raised
"""

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from typing import Any


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"


DEFAULT_PR_ACTIONS = ("opened", "synchronize", "reopened", "ready_for_review")

_GITHUB_EVENT_NAMES = {
    "push": EventKind.PUSH,
    "pull_request": EventKind.PULL_REQUEST,
    "pull_request_target": EventKind.PULL_REQUEST,
    "workflow_dispatch": EventKind.MANUAL,
    "manual": EventKind.MANUAL,
}


def _split_ref(ref: str | None) -> tuple[str | None, str | None]:
    """(branch, tag) for a fully qualified git ref."""
    if not ref:
        return None, None
    if ref.startswith("refs/tags/"):
        return None, ref[len("refs/tags/"):]
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):], None
    return ref, None


@dataclass(frozen=True)
class TriggerEvent:
    kind: EventKind
    ref: str | None = None
    action: str | None = None
    sha: str | None = None
    head_sha: str | None = None
    tag: str | None = None

    @property
    def revision(self) -> str | None:
        """Commit the analysis should be attributed to: PR head first, then the pushed sha."""
        return self.head_sha or self.sha

    @classmethod
    def from_github(cls, event_name: str, payload: dict[str, Any] | None = None) -> TriggerEvent:
        kind = _GITHUB_EVENT_NAMES.get(event_name)
        if kind is None:
            raise ValueError(f"Unsupported event: {event_name}")
        payload = payload or {}
        if kind is EventKind.PULL_REQUEST:
            pr = payload.get("pull_request") or {}
            head = pr.get("head") or {}
            return cls(
                kind=kind,
                ref=head.get("ref"),
                action=payload.get("action"),
                sha=payload.get("after") or head.get("sha"),
                head_sha=head.get("sha"),
            )
        branch, tag = _split_ref(payload.get("ref"))
        return cls(
            kind=kind,
            ref=branch,
            tag=tag,
            sha=payload.get("after") or payload.get("sha"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "ref": self.ref,
            "action": self.action,
            "sha": self.sha,
            "head_sha": self.head_sha,
            "tag": self.tag,
        }


@dataclass(frozen=True)
class TriggerPolicy:
    push_branches: tuple[str, ...] = ("main",)
    pull_request_actions: tuple[str, ...] = DEFAULT_PR_ACTIONS
    manual: bool = True
    push_enabled: bool = True
    pull_request_enabled: bool = True

    def admits(self, event: TriggerEvent) -> bool:
        if event.kind is EventKind.MANUAL:
            return self.manual
        if event.kind is EventKind.PUSH:
            # Tags are not branches; a tag push never matches the allow-list.
            if not self.push_enabled or event.tag or not event.ref:
                return False
            return any(fnmatchcase(event.ref, pat) for pat in self.push_branches)
        if event.kind is EventKind.PULL_REQUEST:
            if not self.pull_request_enabled:
                return False
            return event.action in self.pull_request_actions
        return False

    def reason(self, event: TriggerEvent) -> str:
        if self.admits(event):
            return "admitted"
        if event.kind is EventKind.PUSH and event.tag:
            return f"tag push {event.tag!r} (only branch pushes run)"
        if event.kind is EventKind.PUSH:
            return f"branch {event.ref!r} not in {list(self.push_branches)}"
        if event.kind is EventKind.PULL_REQUEST:
            return f"pull request action {event.action!r} not in {list(self.pull_request_actions)}"
        return "manual dispatch disabled"
