from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from errors import Unauthenticated

SESSION_MAX_AGE_SECS = 14 * 24 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def issue_session_token(user_id: str) -> str:
    if not user_id:
        raise ValueError("user_id is required")
    return _serializer().dumps({"u": user_id})


def resolve_user_id(
    token: Optional[str], max_age_secs: int = SESSION_MAX_AGE_SECS
) -> str:
    """Return the user id carried by a session token or raise Unauthenticated."""
    if not token:
        raise Unauthenticated()
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except SignatureExpired as exc:
        raise Unauthenticated("Session expired") from exc
    except BadSignature as exc:
        raise Unauthenticated("Invalid session") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not user_id:
        raise Unauthenticated("Invalid session")
    return str(user_id)
