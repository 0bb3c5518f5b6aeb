from .reply_cache import CachedReply

__all__ = [
    "CachedReply",
]
