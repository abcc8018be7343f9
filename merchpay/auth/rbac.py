from fastapi import Depends

from merchpay.auth.dependencies import _unauthorized, get_current_user
from merchpay.auth.schemas import CurrentUser
from merchpay.core.enums import UserRole


def require_role(*roles: UserRole):
    """
    Dependency factory restricting an endpoint to the given roles.
    A wrong role is answered like a missing session (401).

    Example:
        current_user: CurrentUser = Depends(require_role(UserRole.ADMIN))
    """
    allowed = {r.value for r in roles}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role.value not in allowed:
            raise _unauthorized()
        return current_user

    return _checker


require_admin = require_role(UserRole.ADMIN)
require_student = require_role(UserRole.STUDENT)
