"""Feed synchronization for a single shared conversation.

Reconciles a bounded historical snapshot with the live stream of inserted
entries, and resolves author profiles lazily.
"""

from .composer import Composer
from .feed import FeedReducer, FeedState
from .profiles import ProfileResolver
from .snapshot import SnapshotLoader
from .subscriber import LiveSubscriber, SubscriptionHandle

__all__ = [
    "Composer",
    "FeedReducer",
    "FeedState",
    "LiveSubscriber",
    "ProfileResolver",
    "SnapshotLoader",
    "SubscriptionHandle",
]
