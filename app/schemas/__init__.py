from .base import BaseSchema, TimestampedSchema
from .job import (
    JobRead,
    JobStats,
    FeedItem,
    CategoryAssignment,
    FeedPushPayload,
    CategoryMirrorPayload,
)
