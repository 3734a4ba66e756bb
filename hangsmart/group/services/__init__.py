"""Group services."""

from .group_service import GroupService
from .subscription import GroupSubscription

__all__ = ["GroupService", "GroupSubscription"]
