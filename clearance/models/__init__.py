from clearance.models.base import Base
from clearance.models.category import Category
from clearance.models.deal import Deal
from clearance.models.activity_log import ActivityLogEntry, ActivityType

__all__ = ['Base', 'Category', 'Deal', 'ActivityLogEntry', 'ActivityType']
