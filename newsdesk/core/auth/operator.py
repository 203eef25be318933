"""
Operator Management

Operators are the authenticated identities allowed to publish. Every
idempotency record is scoped to the operator that made the request.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from ..database import DatabaseAdapter, get_database

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100000


@dataclass
class Operator:
    """Operator (publisher) model."""

    id: UUID
    username: str
    is_active: bool
    created_at: datetime

    def to_dict(self) -> dict:
        """Convert operator to dictionary."""
        return {
            "id": str(self.id),
            "username": self.username,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if isinstance(self.created_at, datetime) else self.created_at,
        }


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    """
    Hash a password with salt using PBKDF2.

    Args:
        password: Plain text password
        salt: Optional salt (generated if not provided)

    Returns:
        Tuple of (hashed_password, salt)
    """
    if salt is None:
        salt = secrets.token_hex(16)
    hashed = hashlib.pbkdf2_hmac(
        'sha256',
        password.encode(),
        salt.encode(),
        PBKDF2_ITERATIONS
    ).hex()
    return hashed, salt


def verify_password(password: str, hashed: str, salt: str) -> bool:
    """Verify a password against hash."""
    check_hash, _ = hash_password(password, salt)
    return secrets.compare_digest(check_hash, hashed)


async def authenticate_operator(
    username: str,
    password: str,
    db: Optional[DatabaseAdapter] = None,
) -> Optional[Operator]:
    """
    Authenticate an operator by username and password.

    Returns:
        Operator if authenticated, None if failed
    """
    db = db or await get_database()

    row = await db.fetchrow(
        """
        SELECT operator_id, username, is_active, password_hash, password_salt, created_at
        FROM operators
        WHERE username = $1
        """,
        username
    )

    if not row or not row["is_active"]:
        return None

    if not verify_password(password, row["password_hash"], row["password_salt"]):
        logger.info(f"Rejected credentials for operator {username}")
        return None

    return Operator(
        id=UUID(str(row["operator_id"])),
        username=row["username"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


async def create_operator(
    username: str,
    password: str,
    db: Optional[DatabaseAdapter] = None,
) -> Operator:
    """
    Create a new operator.

    Args:
        username: Login name (must be unique)
        password: Plain text password (will be hashed)

    Returns:
        Created Operator
    """
    db = db or await get_database()

    operator_id = uuid4()
    password_hash, password_salt = hash_password(password)
    now = datetime.now(timezone.utc)

    await db.execute(
        """
        INSERT INTO operators (operator_id, username, password_hash, password_salt,
                               is_active, created_at)
        VALUES ($1, $2, $3, $4, $5, $6)
        """,
        operator_id,
        username,
        password_hash,
        password_salt,
        True,
        now
    )

    logger.info(f"Created operator {username} ({operator_id})")
    return Operator(id=operator_id, username=username, is_active=True, created_at=now)
