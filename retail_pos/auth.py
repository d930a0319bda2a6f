from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Request, HTTPException
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlmodel import Session, select

from retail_pos import config
from retail_pos.errors import ValidationError
from retail_pos.models import User
from retail_pos.persistence import commit

ALGO = "HS256"
SHIFT_MINUTES = 60 * 12
COOKIE = "token"

# counter staff sell, stock staff receive and adjust, admin does both plus settings
ROLES = ("ADMIN", "BILLING", "INVENTORY")
ANY_ROLE = ROLES
SALES_ROLES = ("ADMIN", "BILLING")
STOCK_ROLES = ("ADMIN", "INVENTORY")

pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _check_role(role: str) -> str:
    role = (role or "").strip().upper()
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role or '(empty)'}")
    return role


def hash_password(password: str) -> str:
    if not password:
        raise ValidationError("Password is required")
    return pwd.hash(password)


def password_matches(password: str, hashed: str) -> bool:
    try:
        return pwd.verify(password, hashed)
    except ValueError:
        # not a hash passlib recognises
        return False


def create_token(username: str, role: str) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=SHIFT_MINUTES)
    return jwt.encode({"sub": username, "role": _check_role(role), "exp": exp}, config.SECRET_KEY, algorithm=ALGO)


def read_token(token: str) -> dict:
    return jwt.decode(token, config.SECRET_KEY, algorithms=[ALGO])


def create_user(session: Session, username: str, password: str, role: str = "BILLING") -> User:
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required")
    if session.exec(select(User).where(User.username == username)).first():
        raise ValidationError(f"User {username} already exists")
    u = User(username=username, password_hash=hash_password(password), role=_check_role(role))
    session.add(u)
    commit(session)
    session.refresh(u)
    return u


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    u = session.exec(select(User).where(User.username == username, User.is_active == True)).first()  # noqa: E712
    if not u or not password_matches(password, u.password_hash):
        return None
    return u


def ensure_admin(session: Session) -> None:
    if not session.exec(select(User).where(User.username == config.ADMIN_USERNAME)).first():
        create_user(session, config.ADMIN_USERNAME, config.ADMIN_PASSWORD, role="ADMIN")


def require_roles(*roles: str) -> Callable:
    unknown = set(roles) - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown roles in guard: {sorted(unknown)}")
    allowed = roles or ROLES

    def guard(request: Request) -> dict:
        token = request.cookies.get(COOKIE)
        if not token:
            raise HTTPException(401, "Login required")
        try:
            claims = read_token(token)
        except JWTError:
            raise HTTPException(401, "Session expired, please log in again")
        if claims.get("role") not in allowed:
            raise HTTPException(403, f"{claims.get('role') or 'This account'} cannot do that")
        request.state.user = claims
        return claims

    return guard
