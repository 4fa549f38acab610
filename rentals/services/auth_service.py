"""
Authentication service for staff logins.
"""
import logging
from sqlalchemy import func

from rentals.exceptions import BusinessLogicError, UnauthorizedError
from rentals.models import Profile

logger = logging.getLogger(__name__)


def authenticate(session, username: str, password: str) -> Profile:
    """
    Check credentials and return the profile.

    Raises:
        BusinessLogicError (401): unknown username or wrong password
        UnauthorizedError: the account has been deactivated
    """
    username = (username or '').strip()
    if not username or not password:
        raise BusinessLogicError('Username and password are required', status_code=401)

    profile = session.query(Profile).filter(func.lower(Profile.username) == username.lower()).first()
    if not profile or not profile.check_password(password):
        logger.warning(f"Failed login attempt for username: {username}")
        raise BusinessLogicError('Invalid username or password', status_code=401)

    if not profile.can_login:
        logger.warning(f"Login attempt on deactivated account: {username}")
        raise UnauthorizedError('Your account has been deactivated. Contact an administrator.')

    logger.info(f"User logged in: {profile.username} ({profile.role})")
    return profile
