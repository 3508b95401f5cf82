import logging
from fastapi import Depends, HTTPException
from app.models.user import User
from app.utils.token import get_current_user

logger = logging.getLogger(__name__)


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        logger.info(f"Admin access denied for user {current_user.email}")
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
