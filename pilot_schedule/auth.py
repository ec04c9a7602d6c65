import os
import secrets
import hashlib
from datetime import datetime, timedelta
from typing import Dict, Optional, Callable, Any

from fastapi import HTTPException, Header, Depends, Cookie

from .db import connect
from .utils import strip_or_none

SESSION_DURATION_SECONDS = int(os.getenv("SESSION_DURATION_SECONDS", "28800"))

ROLE_LABELS = {"manager", "pilot", "viewer"}
# Roles that may fill a shift or training slot
ASSIGNABLE_ROLES = {"pilot", "manager"}


def hash_password(password: str, salt: str) -> str:
    return hashlib.sha256((salt + password).encode("utf-8")).hexdigest()


def verify_password(password: str, salt: str, password_hash: str) -> bool:
    return hash_password(password, salt) == password_hash


def create_user(
    cur,
    password: str,
    role: str,
    username: Optional[str] = None,
    email: Optional[str] = None,
    first_name: str = "",
    last_name: str = "",
) -> int:
    username = strip_or_none(username)
    email = strip_or_none(email)
    if username:
        username = username.lower()
    if email:
        email = email.lower()
    if not username and not email:
        raise ValueError("A username or email is required")
    if role not in ROLE_LABELS:
        raise ValueError("Invalid role")
    salt = secrets.token_hex(16)
    pwd_hash = hash_password(password, salt)
    cur.execute(
        """
        INSERT INTO users(username, email, password_hash, password_salt, first_name, last_name, role, is_active)
        VALUES (?,?,?,?,?,?,?,1)
        """,
        (username, email, pwd_hash, salt, first_name.strip(), last_name.strip(), role),
    )
    return cur.lastrowid


def ensure_default_users(cur) -> None:
    count = cur.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
    if count:
        return
    create_user(
        cur,
        password=os.getenv("ADMIN_DEFAULT_PASSWORD", "admin123"),
        role="manager",
        username=os.getenv("ADMIN_DEFAULT_USERNAME", "admin"),
        first_name="Schedule",
        last_name="Manager",
    )


def find_login_user(cur, identifier: str):
    """Match ``identifier`` against email or username of an active user."""
    ident = identifier.strip().lower()
    return cur.execute(
        """
        SELECT id, username, email, first_name, last_name, role, password_hash, password_salt
        FROM users
        WHERE (email = ? OR username = ?) AND is_active = 1
        """,
        (ident, ident),
    ).fetchone()


def create_session(cur, user_id: int) -> Dict[str, str]:
    token = secrets.token_hex(32)
    expires_at = (datetime.utcnow() + timedelta(seconds=SESSION_DURATION_SECONDS)).isoformat()
    cur.execute(
        "INSERT INTO user_session(token, user_id, expires_at) VALUES (?,?,?)",
        (token, user_id, expires_at),
    )
    return {"token": token, "expires_at": expires_at}


def delete_session(cur, token: str) -> None:
    cur.execute("DELETE FROM user_session WHERE token=?", (token,))


def _extract_token(authorization: Optional[str], cookie_token: Optional[str] = None) -> str:
    if not authorization:
        if cookie_token:
            return cookie_token
        raise HTTPException(status_code=401, detail="Session token required")
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise HTTPException(status_code=401, detail="Invalid token format")
    token = authorization[len(prefix):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Session token required")
    return token


def get_current_user(
    authorization: Optional[str] = Header(None),
    session: Optional[str] = Cookie(default=None),
) -> Dict[str, Any]:
    token = _extract_token(authorization, session)
    with connect() as con:
        cur = con.cursor()
        row = cur.execute(
            """
            SELECT s.token, s.expires_at, u.id AS user_id, u.username, u.email,
                   u.first_name, u.last_name, u.role
            FROM user_session s
            JOIN users u ON u.id = s.user_id
            WHERE s.token=? AND u.is_active = 1
            """,
            (token,),
        ).fetchone()
        if not row:
            raise HTTPException(status_code=401, detail="Invalid session")
        try:
            expires_at = datetime.fromisoformat(row["expires_at"])
        except ValueError:
            expires_at = datetime.utcnow() - timedelta(seconds=1)
        if expires_at < datetime.utcnow():
            cur.execute("DELETE FROM user_session WHERE token=?", (token,))
            con.commit()
            raise HTTPException(status_code=401, detail="Session expired")
        return {
            "id": row["user_id"],
            "username": row["username"],
            "email": row["email"],
            "first_name": row["first_name"],
            "last_name": row["last_name"],
            "role": row["role"],
            "session_token": row["token"],
            "session_expires_at": row["expires_at"],
        }


def require_user(user=Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_role(*roles: str) -> Callable:
    allowed = {r.lower() for r in roles if r}

    def dependency(user=Depends(get_current_user)) -> Dict[str, Any]:
        if allowed and user["role"].lower() not in allowed:
            raise HTTPException(status_code=403, detail="You do not have permission for this operation")
        return user

    return dependency
