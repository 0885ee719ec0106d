"""
gatehouse.api.auth — Current user profile
==========================================

Tokens are issued by the platform's auth service; this router only reads
the ``sub`` claim and keeps a local profile row for attribution.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gatehouse.api.deps import get_current_user, get_engine
from gatehouse.api.serializers import member_dict, user_dict
from gatehouse.services import estates

router = APIRouter(prefix="/auth", tags=["auth"])


class ProfileUpdate(BaseModel):
    full_name: str
    phone_number: str | None = None
    email: str | None = None


@router.get("/me")
def me(
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Return the caller's profile and estate memberships."""
    user = estates.get_user(engine, user_id)
    memberships = estates.list_memberships(engine, user_id)
    return {
        **user_dict(user),
        "memberships": [member_dict(m) for m in memberships],
    }


@router.put("/me")
def update_me(
    body: ProfileUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    user = estates.save_profile(
        engine,
        user_id,
        full_name=body.full_name,
        phone_number=body.phone_number,
        email=body.email,
    )
    return user_dict(user)
