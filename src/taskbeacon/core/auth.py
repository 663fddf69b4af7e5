# src/taskbeacon/core/auth.py

"""
Acting-user context and the default capability check.

Callers resolve the acting user once at the boundary and pass an AuthContext
into every core operation; there is no ambient "current user".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import Unauthorized
from .ports import GroupRepo


@dataclass(slots=True, frozen=True)
class AuthContext:
    user_id: str


def require_user(ctx: AuthContext | None) -> str:
    if ctx is None or not (ctx.user_id or "").strip():
        raise Unauthorized("no acting user")
    return ctx.user_id


def is_group_member(groups: GroupRepo, group_id: int | None, user_id: str) -> bool:
    if group_id is None:
        return False
    group = groups.get_group(group_id)
    return group is not None and user_id in group.members


class GroupAccessPolicy:
    """
    Owner, or (for shared resources) a current member of the resource's group.

    Membership is evaluated at call time, never snapshotted.
    """

    def __init__(self, groups: GroupRepo) -> None:
        self._groups = groups

    def __call__(self, user_id: str, resource: Any) -> bool:
        if getattr(resource, "is_shared", False) and getattr(resource, "group_id", None) is not None:
            return is_group_member(self._groups, resource.group_id, user_id)
        return getattr(resource, "owner_id", None) == user_id
