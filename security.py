import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import Settings
from errors import Forbidden, Unauthorized
from schemas import Role

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE = timedelta(days=1)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class TokenClaims(BaseModel):
    id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], secret: str, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or ACCESS_TOKEN_EXPIRE)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def issue_token(user: Dict[str, Any], secret: str, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for a stored user document (or its serialized form)."""
    user_id = user.get("id") or user.get("_id")
    claims = {"id": str(user_id), "email": user["email"], "role": Role(user["role"]).value}
    return create_access_token(claims, secret, expires_delta)


def decode_token(token: str, secret: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug("Token rejected: %s", e)
        raise Unauthorized("Invalid or expired token")
    try:
        claims = TokenClaims(id=payload["id"], email=payload["email"], role=payload["role"])
    except (KeyError, ValueError):
        raise Unauthorized("Invalid or expired token")
    if not ObjectId.is_valid(claims.id):
        raise Unauthorized("Invalid or expired token")
    return claims


def parse_authorization(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("No authorization header provided")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise Unauthorized('Invalid authorization header format. Format is "Bearer <token>"')
    return parts[1]


# Dependencies

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> TokenClaims:
    token = parse_authorization(authorization)
    return decode_token(token, settings.jwt_secret)


def require_admin(current_user: TokenClaims = Depends(get_current_user)) -> TokenClaims:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")
    return current_user


def ensure_owner_or_admin(current_user: TokenClaims, owner_id: Any) -> None:
    if current_user.is_admin:
        return
    if owner_id is None or current_user.id != str(owner_id):
        raise Forbidden("Access denied")
