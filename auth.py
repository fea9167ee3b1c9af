from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

import settings

# Tokens are issued by the sign-in provider; this scheme only extracts them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/signin", auto_error=False)

PUBLIC_ROUTES = ["/", "/how-it-works", "/impact", "/auth/signin", "/auth/profile-setup"]
SIGNIN_ROUTE = "/auth/signin"
PROFILE_SETUP_ROUTE = "/auth/profile-setup"
HOME_ROUTE = "/dashboard"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    email = payload.get("sub")
    if not email:
        return None
    return {"email": email, "name": payload.get("name"), "avatar": payload.get("picture")}


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[dict]:
    return decode_session(token)


def get_current_user(user: Optional[dict] = Depends(get_optional_user)) -> dict:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def resolve_redirect(path: str, authenticated: bool, has_profile: bool) -> Optional[str]:
    """Where the front end should send a user currently on ``path``.

    Anonymous users only see public routes. Signed-in users without a
    profile are held on the profile setup page.
    """
    if not authenticated:
        return None if path in PUBLIC_ROUTES else SIGNIN_ROUTE
    if not has_profile:
        return None if path == PROFILE_SETUP_ROUTE else PROFILE_SETUP_ROUTE
    if path.startswith("/auth/"):
        return HOME_ROUTE
    return None
