"""
Login against the Users sheet (or a local session when no sheet is configured);
sessions are opaque tokens held in memory.
"""
from fastapi import APIRouter, Depends, Header, HTTPException, status
from typing import Optional
import logging
import threading
import uuid

from cachetools import TTLCache

from core.auth import Capability, authenticate, capabilities_for, local_login
from core.errors import PersistenceError
from models.converters import role_from_sheet
from models.user import User
from schemas.auth import LoginOut, LoginRequest, UserOut
from settings import get_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

SESSION_TTL_SECONDS = 12 * 60 * 60

_sessions: TTLCache = TTLCache(maxsize=1024, ttl=SESSION_TTL_SECONDS)
_sessions_lock = threading.Lock()


def get_storage():
    from main import get_storage_adapter
    return get_storage_adapter()


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        login=user.login,
        name=user.name,
        role=user.role,
        capabilities=sorted(c.value for c in capabilities_for(user.role)),
    )


def current_user(x_session_token: Optional[str] = Header(None)) -> User:
    if not x_session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
    with _sessions_lock:
        user = _sessions.get(x_session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    return user


def require(capability: Capability):
    """Dependency factory: the logged-in user must hold `capability`."""
    def checker(user: User = Depends(current_user)) -> User:
        if capability not in capabilities_for(user.role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {user.role.value} cannot {capability.value}",
            )
        return user

    return checker


@router.post("/login", response_model=LoginOut)
def login(body: LoginRequest, storage=Depends(get_storage)):
    if storage is None:
        settings = get_settings()
        user = local_login(
            body.login, body.password, role_from_sheet(settings.local_role), settings.local_password
        )
    else:
        try:
            users = storage.fetch_users()
        except PersistenceError as e:
            logger.error(f"Failed to load users: {e}")
            raise HTTPException(status_code=502, detail="User directory unreachable")
        user = authenticate(users, body.login, body.password)

    if user is None:
        logger.info(f"Failed login for {body.login!r}")
        raise HTTPException(status_code=401, detail="Invalid login or password")

    token = uuid.uuid4().hex
    with _sessions_lock:
        _sessions[token] = user
    logger.info(f"User {user.login} logged in as {user.role.value}")
    return LoginOut(token=token, user=user_out(user))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(x_session_token: Optional[str] = Header(None)):
    if x_session_token:
        with _sessions_lock:
            _sessions.pop(x_session_token, None)


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(current_user)):
    return user_out(user)
