"""
api/routes/user.py -- Current user info.

Routes (mounted at settings.user_root):
  GET  "" and "/"  -- the authenticated principal's public user record
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import UserInfo
from auth.dependencies import require_login
from auth.store import UserRegistry

router = APIRouter(dependencies=[Depends(require_login)])


@router.get("", response_model=UserInfo)
@router.get("/", response_model=UserInfo)
def current_user(request: Request, username: str = Depends(require_login)) -> UserInfo:
    users: UserRegistry = request.app.state.users
    user = users.find_active(username)
    if user is None:
        # Deactivated between the gate check and this lookup.
        raise HTTPException(status_code=404, detail="unknown user")
    return UserInfo(**user.to_public_dict())
