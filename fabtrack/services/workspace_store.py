from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, field

from services.list_snapshot import ListSnapshot
from services.request_composer import ComposerDraft
from services.review_workflow import ReviewState


DEFAULT_TTL_SECONDS = 60 * 60 * 12
_LOCK = threading.Lock()
_WORKSPACES: dict[str, "Workspace"] = {}


@dataclass
class Workspace:
    review: ReviewState = field(default_factory=ReviewState)
    composer: ComposerDraft = field(default_factory=ComposerDraft)
    catalog: ListSnapshot = field(default_factory=ListSnapshot)
    all_requests: ListSnapshot = field(default_factory=ListSnapshot)
    pending_requests: ListSnapshot = field(default_factory=ListSnapshot)
    touched_at: float = field(default_factory=time.time)


def _prune_unlocked(now: float, ttl_seconds: int) -> None:
    cutoff = now - max(ttl_seconds, 1)
    for workspace_id, workspace in list(_WORKSPACES.items()):
        if workspace.touched_at < cutoff:
            _WORKSPACES.pop(workspace_id, None)


def get_workspace(workspace_id: str | None, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> tuple[str, Workspace]:
    now = time.time()
    with _LOCK:
        _prune_unlocked(now, ttl_seconds)
        workspace = _WORKSPACES.get(workspace_id) if workspace_id else None
        if workspace is None:
            workspace_id = secrets.token_urlsafe(24)
            workspace = Workspace()
            _WORKSPACES[workspace_id] = workspace
        workspace.touched_at = now
        return workspace_id, workspace


def discard_workspace(workspace_id: str | None) -> None:
    if not workspace_id:
        return
    with _LOCK:
        _WORKSPACES.pop(workspace_id, None)
