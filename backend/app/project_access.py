from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Authorized:
    project_id: Optional[int]


@dataclass(frozen=True)
class Forbidden:
    project_id: Optional[int]
    reason: str = "forbidden"


AccessResult = Union[Authorized, Forbidden]


def is_admin(user: dict) -> bool:
    return str(user.get("role") or "").strip().lower() == "admin"


def check_project_access(cur, user: dict, project_id: Optional[int]) -> AccessResult:
    """
    Admins see every project in their organization. Everyone else needs an
    assignment on the project, either directly or through one of their teams.
    """
    if is_admin(user):
        return Authorized(project_id)
    if not project_id:
        return Forbidden(None, "project is required")

    cur.execute(
        """
        SELECT 1
        FROM project_assignments pa
        JOIN projects p ON p.id = pa.project_id
        WHERE pa.project_id = %s AND pa.user_id = %s AND p.organization_id = %s
        UNION
        SELECT 1
        FROM project_assignments pa
        JOIN projects p ON p.id = pa.project_id
        JOIN team_members tm ON tm.team_id = pa.team_id
        WHERE pa.project_id = %s AND tm.user_id = %s AND p.organization_id = %s
        LIMIT 1
        """,
        (
            project_id,
            user["user_id"],
            user["organization_id"],
            project_id,
            user["user_id"],
            user["organization_id"],
        ),
    )
    if cur.fetchone():
        return Authorized(project_id)
    return Forbidden(project_id, "not assigned to project")


def authorize_sale_projects(cur, user: dict, *project_ids: Optional[int]) -> AccessResult:
    # Every distinct project the mutation touches must pass (e.g. moving a sale between projects).
    seen = []
    for pid in project_ids:
        if pid and pid not in seen:
            seen.append(pid)
    if not seen:
        return check_project_access(cur, user, None)
    for pid in seen:
        res = check_project_access(cur, user, pid)
        if isinstance(res, Forbidden):
            return res
    return Authorized(seen[0])


def accessible_project_ids(cur, user: dict) -> Optional[list]:
    """Project ids a non-admin may read; None means unrestricted (admin)."""
    if is_admin(user):
        return None
    cur.execute(
        """
        SELECT pa.project_id
        FROM project_assignments pa
        WHERE pa.user_id = %s
        UNION
        SELECT pa.project_id
        FROM project_assignments pa
        JOIN team_members tm ON tm.team_id = pa.team_id
        WHERE tm.user_id = %s
        """,
        (user["user_id"], user["user_id"]),
    )
    return [r["project_id"] for r in cur.fetchall()]
