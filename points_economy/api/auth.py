"""
Authentication dependencies

Bearer tokens are issued by the platform's authentication service; this
module only verifies them and resolves the caller against the directory.
"""

from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..authorization import Principal, Role
from ..config import get_config
from ..system import PointsSystem


security = HTTPBearer(auto_error=False)

_points_system: Optional[PointsSystem] = None


def get_points_system() -> PointsSystem:
    """Dependency returning the process-wide points system, built on first use"""
    global _points_system
    if _points_system is None:
        _points_system = PointsSystem.from_config()
    return _points_system


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: PointsSystem = Depends(get_points_system)
) -> Principal:
    """Dependency that validates the JWT and returns the calling principal"""
    if not credentials:
        raise _unauthenticated("Not authenticated")

    config = get_config()
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise _unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthenticated("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthenticated("Invalid token")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise _unauthenticated("Invalid token role")

    # The directory is authoritative for tutor assignment
    participant = system.directory.get_participant(user_id)
    if participant is None or participant.role != role:
        raise _unauthenticated("Unknown user")
    return participant.to_principal()
