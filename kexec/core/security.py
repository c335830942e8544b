from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone

from .config import Settings

# Tokens are issued by the external login service mounted at this URL; this
# service only validates them. tokenUrl is advertised in the OpenAPI schema.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def create_access_token(user_id: str, secret_key: str, algorithm: str = "HS256",
                        expires_minutes: int = 60) -> str:
    """Issue a bearer token whose subject is the user id."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": user_id, "exp": expire}, secret_key, algorithm=algorithm)


def issue_access_token(settings: Settings, user_id: str) -> str:
    """Token for user_id signed and expiring as configured."""
    return create_access_token(
        user_id,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        expires_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
    )


def get_current_user_id(
    request: Request,
    token: str = Depends(oauth2_scheme)
) -> str:
    """
    Validate the access token and return the user id it was issued for.
    Credential verification happens upstream; this only checks the token.
    """
    settings = request.app.state.platform.settings
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
        user_id = payload.get("sub")
        if not user_id:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    return user_id
