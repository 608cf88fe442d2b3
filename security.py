import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from database import Database, get_db, is_valid_id, sanitize, to_obj_id
from errors import Unauthorized, WeakPassword

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

PASSWORD_RE = re.compile(r"(?=.*\d)(?=.*[a-z])(?=.*[A-Z]).{6,}")


def verify_password_policy(password: str) -> None:
    # at least 6 chars, one digit, one lowercase and one uppercase letter
    if not PASSWORD_RE.match(password or ""):
        raise WeakPassword()


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def public_user(user: Dict) -> Dict:
    d = sanitize(user)
    d.pop("password_hash", None)
    return d


async def _actor_from_token(token: str, db: Database) -> Dict:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id: str = payload.get("sub")
    except JWTError:
        raise Unauthorized()
    if not user_id or not is_valid_id(user_id):
        raise Unauthorized()
    user = await db.users.find_by_id(to_obj_id(user_id))
    if not user:
        raise Unauthorized()
    u = public_user(user)
    return {"id": u["id"], "email": u.get("email"), "name": u.get("name")}


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Dict:
    if not token:
        raise Unauthorized("Not authenticated")
    return await _actor_from_token(token, db)


async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)
) -> Optional[Dict]:
    """Like get_current_user, but anonymous requests resolve to None.

    A token that is present but invalid is still rejected.
    """
    if not token:
        return None
    return await _actor_from_token(token, db)


async def get_review_actor(
    token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)
) -> Optional[Dict]:
    if config.REVIEW_MODE == "guest":
        return await get_optional_user(token, db)
    return await get_current_user(token, db)
