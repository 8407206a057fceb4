"""Matching domain exports."""

from . import dealbreakers, feed, lifecycle, notifications, scoring  # noqa: F401
from .models import SwipeType, UserProfile, WantsKids  # noqa: F401
from .repository import MatchingRepository  # noqa: F401
from .schemas import FeedResponse, SwipePayload, SwipeResponse  # noqa: F401
