# rentalsync/services/ownership.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AppUser

# Roles allowed to own listings discovered by sync
OWNER_ROLES = ("OWNER", "ADMIN")


def pick_default_owner(db: Session) -> Optional[AppUser]:
    """
    Owner assigned to a listing the first time sync sees it.

    Policy: earliest-created user holding OWNER or ADMIN; ties on created_at
    go to the lowest id. None means new listings are skipped this cycle.
    """
    return db.scalar(
        select(AppUser)
        .where(AppUser.role.in_(OWNER_ROLES))
        .order_by(AppUser.created_at.asc(), AppUser.id.asc())
        .limit(1)
    )
