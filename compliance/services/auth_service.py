"""Session lookup for the compliance API.

Sessions are issued by the host application; this module only verifies the
HS256-signed token it hands out and reads the user id and role from it.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging

from compliance.config import settings
from compliance.core.time_provider import TimeProvider, default_time_provider
from compliance.models import Role


logger = logging.getLogger(__name__)

_KNOWN_ROLES = {member.value for member in Role}


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _sign(signing_input: bytes) -> bytes:
    return hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()


def issue_session_token(
    user_id: str,
    role: str,
    *,
    ttl_seconds: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> str:
    now = int(time_provider.now().timestamp())
    payload: dict = {'sub': str(user_id), 'role': str(role).lower(), 'iat': now}
    if ttl_seconds:
        payload['exp'] = now + int(ttl_seconds)
    header_part = _b64url_encode(json.dumps({'alg': 'HS256', 'typ': 'JWT'}, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signature_part = _b64url_encode(_sign(f'{header_part}.{payload_part}'.encode('ascii')))
    return f'{header_part}.{payload_part}.{signature_part}'


def _decode(token: str) -> dict | None:
    try:
        header_part, payload_part, signature_part = token.split('.')
        provided_signature = _b64url_decode(signature_part)
        signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    except ValueError:
        return None
    if not hmac.compare_digest(provided_signature, _sign(signing_input)):
        return None
    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    if not token:
        return None
    payload = _decode(token)
    if not payload:
        return None
    user_id = str(payload.get('sub') or '').strip()
    role = str(payload.get('role') or '').strip().lower()
    if not user_id or role not in _KNOWN_ROLES:
        return None
    expires_at = payload.get('exp')
    if expires_at is not None and int(expires_at) <= int(time_provider.now().timestamp()):
        logger.info('session_token_expired user_id=%s', user_id)
        return None
    return {'user_id': user_id, 'role': role}
