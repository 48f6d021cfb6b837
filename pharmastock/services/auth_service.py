import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy.orm import Session

from pharmastock.config import settings
from pharmastock.models.user import ActivityLog, User, UserRole

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_access_token(user: User) -> str:
    payload = {
        "sub": user.id,
        "username": user.username,
        "role": user.role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[TOKEN_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = db.query(User).filter(User.username == username, User.active.is_(True)).first()
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", username)
        return None
    return user


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def create_user(
    db: Session, username: str, password: str, display_name: str = "", role: str = UserRole.STAFF.value
) -> User:
    if role not in {r.value for r in UserRole}:
        raise ValueError(f"Unknown role '{role}'")
    if db.query(User).filter(User.username == username).first():
        raise ValueError(f"Username '{username}' already exists")
    user = User(
        username=username,
        display_name=display_name or username,
        password_hash=hash_password(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc()).all()


def ensure_default_admin(db: Session) -> None:
    """Seed the configured admin account on an empty user table."""
    if db.query(User).count() == 0:
        create_user(
            db,
            username=settings.DEFAULT_ADMIN_USERNAME,
            password=settings.DEFAULT_ADMIN_PASSWORD,
            display_name="Administrator",
            role=UserRole.ADMIN.value,
        )
        logger.info("Created default admin account '%s'", settings.DEFAULT_ADMIN_USERNAME)


def log_activity(
    db: Session,
    user: User,
    action: str,
    detail: str = "",
    reference_id: str = "",
    ip: str = "",
) -> None:
    db.add(ActivityLog(
        user_id=user.id,
        username=user.username,
        action=action,
        detail=detail,
        reference_id=reference_id,
        ip_address=ip,
    ))
    db.commit()


def get_activity_logs(
    db: Session, limit: int = 100, user_id: str | None = None, reference_id: str | None = None
) -> list[ActivityLog]:
    q = db.query(ActivityLog)
    if user_id:
        q = q.filter(ActivityLog.user_id == user_id)
    if reference_id:
        q = q.filter(ActivityLog.reference_id == reference_id)
    return q.order_by(ActivityLog.created_at.desc()).limit(limit).all()
