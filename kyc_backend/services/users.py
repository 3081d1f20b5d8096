import uuid
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import User, UserRole
from ..security import hash_password, verify_password
from ..settings import settings

logger = logging.getLogger(__name__)


def get_user_by_username(db: Session, username: str):
    return db.scalar(select(User).where(User.username == username))


def get_user_by_id(db: Session, user_id: str):
    return db.get(User, user_id)


def authenticate(db: Session, username: str, password: str):
    u = get_user_by_username(db, username)
    if not u or u.is_active is False:
        return None
    if not verify_password(password, u.password_hash):
        return None
    return u


def ensure_admin_seed(db: Session):
    admin = get_user_by_username(db, settings.ADMIN_USERNAME)
    if admin:
        return admin
    admin = create_user(
        db,
        username=settings.ADMIN_USERNAME,
        password=settings.ADMIN_PASSWORD,
        role=UserRole.ADMIN.value,
        email=settings.ADMIN_EMAIL,
    )
    logger.info(f"Seeded admin user '{admin.username}'")
    return admin


def create_user(
    db: Session,
    username: str,
    password: str,
    role: str,
    email=None,
    union_id=None,
    region_id=None,
    club_id=None,
    manager_id=None,
    permissions=None,
):
    u = User(
        id=str(uuid.uuid4()),
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        union_id=union_id,
        region_id=region_id,
        club_id=club_id,
        manager_id=manager_id,
        permissions=permissions or {},
        is_active=True,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u
