from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from settlement.core_settings import Settings

def create_access_token(settings: Settings, user_id: int, is_admin: bool = False,
                        is_active: bool = True, expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "is_admin": is_admin,
        "is_active": is_active,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(settings: Settings, token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None
