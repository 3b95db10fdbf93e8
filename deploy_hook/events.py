"""Decide what a GitHub delivery should trigger."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple

DIRECT_DEPLOY_TRIGGER = "deploy2"
BRANCH_REF_PREFIX = "refs/heads/"


class Action(enum.Enum):
    IGNORE = "ignore"
    DEPLOY_DIRECT = "deploy_direct"
    DEPLOY_BLUE_GREEN = "deploy_blue_green"


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass
class PushEvent:
    """The fields of a push payload the dispatcher reads."""

    ref: str = ""
    repo_name: str = ""
    repo_full_name: str = ""
    pusher: str = ""
    commit_messages: List[str] = field(default_factory=list)
    has_commits: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "PushEvent":
        payload = _mapping(payload)
        repository = _mapping(payload.get("repository"))
        pusher = _mapping(payload.get("pusher"))
        commits = payload.get("commits")

        messages: List[str] = []
        if isinstance(commits, list):
            for commit in commits:
                message = _mapping(commit).get("message")
                if message is not None:
                    messages.append(str(message))

        return cls(
            ref=str(payload.get("ref") or ""),
            repo_name=str(repository.get("name") or ""),
            repo_full_name=str(repository.get("full_name") or ""),
            pusher=str(pusher.get("name") or ""),
            commit_messages=messages,
            has_commits=commits is not None,
        )

    @property
    def branch(self) -> str:
        return self.ref.split("/")[-1] if self.ref else ""

    @property
    def commits_text(self) -> str:
        return "\n".join(self.commit_messages)


def classify(event_type: Optional[str], payload: Any) -> Action:
    """Map a delivery to an ``Action``.

    Pings and payloads without a ``commits`` field are ignored. A push whose
    commit messages mention ``deploy2`` asks for a direct deployment,
    anything else goes through the blue-green script.
    """

    if event_type == "ping":
        return Action.IGNORE

    event = payload if isinstance(payload, PushEvent) else PushEvent.from_payload(payload)
    if not event.has_commits:
        return Action.IGNORE

    if DIRECT_DEPLOY_TRIGGER in event.commits_text:
        return Action.DEPLOY_DIRECT
    return Action.DEPLOY_BLUE_GREEN


def qualify_branch(name: str) -> str:
    return name if name.startswith(BRANCH_REF_PREFIX) else BRANCH_REF_PREFIX + name


@dataclass
class BranchPolicy:
    """Allow-list of branch refs that may trigger a deployment."""

    enabled: bool = False
    allowed: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.allowed = tuple(qualify_branch(name) for name in self.allowed)

    @classmethod
    def from_names(cls, names: Iterable[str], enabled: bool = True) -> "BranchPolicy":
        return cls(enabled=enabled, allowed=tuple(names))

    def allows(self, ref: str) -> bool:
        if not self.enabled:
            return True
        return ref in self.allowed
