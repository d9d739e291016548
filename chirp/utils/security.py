from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from chirp.core.config import settings
from chirp.schemas.user import TokenPayload
from chirp.utils.errors import AuthError


def create_access_token(user_id: str, expires_delta: timedelta = timedelta(hours=2)) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"sub": user_id, "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return TokenPayload(**payload)
    except (JWTError, PydanticValidationError) as exc:
        raise AuthError("Could not validate credentials") from exc
