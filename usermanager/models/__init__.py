# usermanager Models
from usermanager.models.base import BaseModel
from usermanager.models.user import Permission, Role, User, role_permissions, user_roles

__all__ = [
    "BaseModel",
    "Permission",
    "Role",
    "User",
    "role_permissions",
    "user_roles",
]
