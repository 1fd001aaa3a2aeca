from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

import bcrypt
from jose import jwt


def hash_password(plain: str) -> str:
    if not plain or len(plain) < 7:
        raise ValueError("Password too short")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@dataclass(frozen=True)
class JwtPayload:
    sub: str
    exp: int


def create_access_token(*, subject: str, secret: str, algorithm: str, expires_minutes: int) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    exp = now + dt.timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "exp": int(exp.timestamp())}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, *, secret: str, algorithm: str) -> JwtPayload:
    data = jwt.decode(token, secret, algorithms=[algorithm])
    return JwtPayload(sub=str(data["sub"]), exp=int(data["exp"]))
