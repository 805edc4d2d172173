"""Authentication, session tokens and role permissions."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Optional, Union, Iterable

from jose import JWTError, jwt
from passlib.context import CryptContext

from eduadmin.config import Settings
from eduadmin.models import User, UserRole
from eduadmin.store import EvaluationStore, RecordNotFound

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'
pwd_context = CryptContext(schemes=['pbkdf2_sha256'], deprecated='auto')

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.ADMIN: frozenset({
        'manage_users',
        'manage_students',
        'manage_teachers',
        'manage_classes',
        'manage_subjects',
        'manage_evaluations',
        'view_results',
        'view_admin_panel',
    }),
    UserRole.TEACHER: frozenset({
        'add_student',
        'edit_student',
        'view_students',
        'add_evaluation',
        'edit_evaluation',
        'view_evaluations',
    }),
    UserRole.VIEWER: frozenset({
        'view_students',
        'view_teachers',
        'view_classes',
        'view_subjects',
    }),
}


class AuthError(Exception):
    """Credentials or token rejected."""


@dataclass(frozen=True)
class Session:
    """Identity of the caller, passed explicitly to whatever needs it."""
    user_id: str
    username: str
    role: UserRole
    name: str = ''

    @classmethod
    def for_user(cls, user: User) -> 'Session':
        return cls(user_id=user.id or '', username=user.username, role=user.role, name=user.name)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def has_role(session: Optional[Session], role: Union[UserRole, Iterable[UserRole]]) -> bool:
    if session is None:
        return False
    if isinstance(role, UserRole):
        return session.role == role
    return session.role in set(role)


def has_permission(session: Optional[Session], permission: str) -> bool:
    """Admins hold every permission; other roles use ROLE_PERMISSIONS."""
    if session is None:
        return False
    if session.role == UserRole.ADMIN:
        return True
    return permission in ROLE_PERMISSIONS.get(session.role, frozenset())


def ensure_default_admin(store: EvaluationStore, settings: Settings) -> User:
    """Create the configured administrator account if it does not exist yet."""
    existing = store.users.find(username=settings.admin_username)
    if existing:
        return existing[0]
    admin = store.users.insert(User(
        username=settings.admin_username,
        password_hash=hash_password(settings.admin_password),
        name=settings.admin_name,
        email='admin@system.local',
        role=UserRole.ADMIN,
    ))
    logger.info("Created default admin account '%s'", admin.username)
    return admin


def authenticate(store: EvaluationStore, username: str, password: str) -> Session:
    matches = store.users.find(username=username)
    if not matches or not verify_password(password, matches[0].password_hash):
        logger.warning("Failed login for '%s'", username)
        raise AuthError('Invalid username or password')
    return Session.for_user(matches[0])


def resolve_session(store: EvaluationStore, session: Session) -> Session:
    """Re-read the account behind a decoded token so deletions and role changes apply at once."""
    try:
        user = store.users.get(session.user_id)
    except RecordNotFound:
        raise AuthError('Account no longer exists') from None
    return Session.for_user(user)


def issue_token(session: Session, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    claims = asdict(session)
    claims['role'] = session.role.value
    claims['sub'] = session.username
    expires = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims['exp'] = datetime.now(timezone.utc) + expires
    return jwt.encode(claims, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings) -> Session:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
        return Session(
            user_id=payload.get('user_id', ''),
            username=payload['username'],
            role=UserRole(payload['role']),
            name=payload.get('name', ''),
        )
    except (JWTError, KeyError, ValueError) as e:
        raise AuthError('Invalid or expired token') from e
