from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from compliance.core.errors import (
    AlreadySubmitted,
    ComplianceError,
    InvalidTransition,
    MissingReason,
    NotFound,
    StorageFailure,
    ValidationFailed,
)
from compliance.models import Role
from compliance.services import auth_service


ERROR_STATUS_CODES: dict[type[ComplianceError], int] = {
    ValidationFailed: 422,
    AlreadySubmitted: 409,
    InvalidTransition: 409,
    MissingReason: 400,
    NotFound: 404,
    StorageFailure: 502,
}


def _resolve_token(request: Request) -> str | None:
    token = request.cookies.get('auth_session')
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_auth_user(request: Request) -> dict:
    session = auth_service.validate_session_token(_resolve_token(request))
    if not session:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return session


def require_role(user: dict, allowed_roles: Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        raise HTTPException(status_code=403, detail='Forbidden')


def require_admin(request: Request) -> dict:
    user = require_auth_user(request)
    require_role(user, (Role.ADMIN.value,))
    return user


def error_response(exc: ComplianceError) -> JSONResponse:
    status_code = 500
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content=exc.to_dict())
