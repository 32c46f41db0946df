# fuelhub/utils/security.py

"""
Пароли (passlib, sha256_crypt: без проблем bcrypt на Windows) и JWT (PyJWT).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jwt import encode, decode
from passlib.context import CryptContext

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(minutes=15)

pwd_context = CryptContext(schemes=["sha256_crypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, stored_hash: Optional[str]) -> bool:
    """
    True, если пароль совпал с хэшем из базы.
    Пустой или нераспознанный хэш (пользователь без пароля, чужая схема) не совпадает ни с чем.
    """
    if not stored_hash:
        return False
    try:
        return pwd_context.verify(plain_password, stored_hash)
    except ValueError:
        return False


def create_access_token(data: dict, secret_key: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    JWT с полем exp.
    data: claims, например {"sub": "login", "role": "vendor"}
    """
    claims = dict(data, exp=datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL))
    return encode(claims, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> dict:
    """Ошибки PyJWT (ExpiredSignatureError, InvalidTokenError) пробрасываются вызывающему коду."""
    return decode(token, secret_key, algorithms=[ALGORITHM])
