from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict

from fastapi import Depends, Header, HTTPException
from firebase_admin import auth as firebase_auth

from .database import get_db

logger = logging.getLogger(__name__)

_TOKEN_CACHE: Dict[str, tuple[float, dict]] = {}
_USER_CACHE: Dict[str, tuple[float, dict]] = {}


def _cache_get(cache: dict, key: str):
    item = cache.get(key)
    if not item:
        return None
    expires_at, value = item
    if expires_at < time.time():
        cache.pop(key, None)
        return None
    return value


def _cache_set(cache: dict, key: str, value: dict, ttl_s: float):
    cache[key] = (time.time() + ttl_s, value)


async def _to_thread(fn, timeout_s: float = 25.0):
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Upstream authentication timed out")


async def get_current_user(authorization: str = Header(...)) -> Dict[str, Any]:
    """Verify the Firebase ID token and return the user's Firestore profile."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.split(" ")[1]
    try:
        decoded_token = _cache_get(_TOKEN_CACHE, token)
        if not decoded_token:
            decoded_token = await _to_thread(lambda: firebase_auth.verify_id_token(token))
            _cache_set(_TOKEN_CACHE, token, decoded_token, ttl_s=60.0)
    except HTTPException:
        raise
    except Exception as exc:
        logger.warning("Token verification failed: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    uid = decoded_token.get("uid")
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token structure")

    user_data = _cache_get(_USER_CACHE, uid)
    if not user_data:
        user_doc = await _to_thread(lambda: get_db().collection("users").document(uid).get())
        if not user_doc.exists:
            raise HTTPException(status_code=401, detail="Account deleted or profile missing")
        user_data = user_doc.to_dict() or {}
        _cache_set(_USER_CACHE, uid, user_data, ttl_s=15.0)

    return {**user_data, "uid": uid, "email": decoded_token.get("email") or user_data.get("email")}


def require_admin(user: Dict[str, Any] = Depends(get_current_user)):
    """Require admin or super_admin role."""
    user_role = user.get("role")
    if user_role not in ["admin", "super_admin"]:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
