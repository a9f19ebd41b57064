"""
Traveler and staff accounts: registration and login.
"""

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AccountConflictError, AuthenticationError, PermissionDeniedError
from app.core.logging import get_logger
from app.core.security import create_access_token, hash_password, verify_password
from app.models.user import User, UserRole
from app.schemas.user import UserCreate, UserLogin

logger = get_logger(__name__)


async def register_user(db: AsyncSession, user_data: UserCreate, role: str = UserRole.CUSTOMER) -> User:
    """Create an account; email and username must both be unused."""
    result = await db.execute(
        select(User.email, User.username).where(
            or_(User.email == user_data.email, User.username == user_data.username)
        )
    )
    for email, username in result.all():
        if email == user_data.email:
            logger.warning("registration_failed", reason="email_exists", email=user_data.email)
            raise AccountConflictError("Email already registered")
        if username == user_data.username:
            logger.warning("registration_failed", reason="username_exists", username=user_data.username)
            raise AccountConflictError("Username already taken")

    user = User(
        email=user_data.email,
        username=user_data.username,
        phone=user_data.phone,
        hashed_password=hash_password(user_data.password),
        role=role,
        loyalty_points=0,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, role=user.role)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """Check credentials and issue a bearer token carrying the user's id and role."""
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise PermissionDeniedError("Account is deactivated")

    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    logger.info("user_logged_in", user_id=user.id, role=user.role)
    return token
