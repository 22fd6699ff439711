import time

import jwt

from api.config import TutorConfig


def _now_ts() -> int:
    return int(time.time())


def issue_token(
    claims: dict,
    secret: str,
    ttl_sec: int | None = None,
    algorithm: str = "HS256",
) -> str:
    payload = dict(claims)
    if ttl_sec:
        payload["exp"] = _now_ts() + int(ttl_sec)
    return jwt.encode(payload, secret, algorithm=algorithm)


def verify_token(token: str | None, secret: str, algorithm: str = "HS256") -> dict | None:
    if not token or not isinstance(token, str):
        return None
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.PyJWTError:
        return None


def create_access_token(user_id: str, email: str | None, config: TutorConfig) -> str:
    claims = {"sub": user_id, "email": email, "typ": "access"}
    return issue_token(
        claims,
        config.jwt_secret,
        ttl_sec=config.token_ttl_sec or None,
        algorithm=config.jwt_algorithm,
    )


def verify_access_token(token: str | None, config: TutorConfig) -> dict | None:
    payload = verify_token(token, config.jwt_secret, algorithm=config.jwt_algorithm)
    if not payload or payload.get("typ") != "access":
        return None
    if not payload.get("sub"):
        return None
    return payload
