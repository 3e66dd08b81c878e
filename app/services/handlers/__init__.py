from app.services.handlers.base import JobHandler, HandlerRegistry
from app.services.handlers.feed_push import FeedPushHandler
from app.services.handlers.category_mirror import CategoryMirrorHandler

__all__ = [
    "JobHandler",
    "HandlerRegistry",
    "FeedPushHandler",
    "CategoryMirrorHandler",
]
