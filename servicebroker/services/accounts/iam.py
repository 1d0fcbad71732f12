from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable


ROLE_RESOURCE_PREFIX = "roles/"
SERVICE_ACCOUNT_MEMBER_PREFIX = "serviceAccount:"


@dataclass
class PolicyBinding:
    role: str
    members: list[str] = field(default_factory=list)


@dataclass
class IamPolicy:
    # etag guards read-modify-write; a stale etag on write is a 409 conflict.
    bindings: list[PolicyBinding] = field(default_factory=list)
    etag: str = ""


def roles_to_members(bindings: Iterable[PolicyBinding]) -> dict[str, set[str]]:
    grouped: dict[str, set[str]] = {}
    for binding in bindings:
        grouped.setdefault(binding.role, set()).update(binding.members)
    return grouped


def merge_bindings(bindings: Iterable[PolicyBinding]) -> list[PolicyBinding]:
    """Collapse bindings to one entry per role with the union of its members.

    Roles left without members are dropped. Output is sorted by role with sorted
    members so merged policies compare equal regardless of input order.
    """
    merged = []
    for role, members in sorted(roles_to_members(bindings).items()):
        if not members:
            continue
        merged.append(PolicyBinding(role=role, members=sorted(members)))
    return merged
