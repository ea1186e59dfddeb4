import asyncio
import logging
from typing import Annotated, Optional

from fastapi import Depends, Request

from core.errors import NotFound, Unauthenticated, Unauthorized
from core.firebase import get_firestore_client, verify_id_token

logger = logging.getLogger(__name__)

# Roles Defined In The Identity Layer
MANAGER_ROLE = "MANAGER"
CARE_WORKER_ROLE = "CARE_WORKER"
MANAGER_ROLES = [MANAGER_ROLE]
ROLES = [MANAGER_ROLE, CARE_WORKER_ROLE]


def _user_ref(uid: str):
    return get_firestore_client().collection("users").document(uid)


def _as_user(uid: str, profile: dict) -> dict:
    return {
        "uid": uid,
        "name": profile.get("displayName", ""),
        "email": profile.get("email", ""),
        "role": profile.get("role", CARE_WORKER_ROLE),
    }


# Reads users/{uid}; None when the profile doesn't exist
def load_user_profile(uid: str) -> Optional[dict]:
    snapshot = _user_ref(uid).get()
    if not snapshot.exists:
        return None
    return _as_user(uid, snapshot.to_dict() or {})


# Sets the role on an existing profile and returns the updated user
def update_user_role(uid: str, role: str) -> dict:
    user_ref = _user_ref(uid)
    snapshot = user_ref.get()
    if not snapshot.exists:
        raise NotFound("User not found")

    user_ref.update({"role": role})
    logger.info(f"[AUTH] Role for user {uid} set to {role}")
    return _as_user(uid, {**(snapshot.to_dict() or {}), "role": role})


# Checks Firebase Auth Token And Pulls The User Profile
async def get_current_user(request: Request) -> dict:

    # 1) Extract & Analyze Authorization Header
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise Unauthenticated("Missing or invalid Authorization header")
    token = auth_header.split(" ", 1)[1]

    # 2) Verify This Points to a Real User Account
    try:
        decoded = await asyncio.to_thread(verify_id_token, token)
    except Exception:
        raise Unauthenticated("Invalid or expired token")
    uid = decoded.get("uid")
    if not uid:
        raise Unauthenticated("Token did not contain uid")

    # 3) Fetch the Firestore user profile
    user = await asyncio.to_thread(load_user_profile, uid)
    if user is None:
        raise NotFound("User profile not found")
    return user


def is_manager(user: dict) -> bool:
    return user.get("role") in MANAGER_ROLES


# Manager Role Check Dependency
async def require_manager_role(
    current_user: Annotated[dict, Depends(get_current_user)]
) -> dict:
    if not is_manager(current_user):
        logger.info(f"[AUTH] User {current_user.get('uid')} denied manager access")
        raise Unauthorized("Unauthorized - Manager access required")
    return current_user
