"""API routers for AgencyCRM."""

from . import assignments
from . import branches
from . import checks
from . import health
from . import permissions
from . import roles

__all__ = [
    "assignments",
    "branches",
    "checks",
    "health",
    "permissions",
    "roles",
]
