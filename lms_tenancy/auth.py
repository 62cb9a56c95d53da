import logging
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from lms_tenancy.config import settings
from lms_tenancy.exceptions import AuthenticationError

# Initialize logging
logger = logging.getLogger(__name__)


# Function to create an access token with an expiration time
def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (user id) in token data.")

    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


# Function to decode an access token into the user id it was issued for
def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as e:
        logger.info("Token expired")
        raise AuthenticationError("Token has expired") from e
    except JWTError as e:
        logger.warning("JWT decoding failed: %s", e)
        raise AuthenticationError("Invalid token") from e

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Token is missing 'sub' claim")
        raise AuthenticationError("Token does not contain 'sub' field.")
    return str(user_id)
