"""Hard compatibility filters applied before any scoring."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from matchcore.domain.matching.models import UserProfile, WantsKids

KIDS_CONFLICT = "Incompatible kids preference"
GENDER_MISMATCH = "Gender preference mismatch"


@dataclass(slots=True, frozen=True)
class DealbreakerVerdict:
	compatible: bool
	reason: Optional[str] = None


COMPATIBLE = DealbreakerVerdict(compatible=True)


def _firm(preference: Optional[WantsKids]) -> bool:
	return preference is not None and preference is not WantsKids.MAYBE


def _interested_in(profile: UserProfile, gender: str) -> bool:
	return gender in profile.looking_for


def check_dealbreakers(user1: UserProfile, user2: UserProfile) -> DealbreakerVerdict:
	"""Reject pairs with opposite firm children preferences or without mutual gender interest.

	A "maybe" or unset children preference on either side never rejects.
	"""
	kids1 = user1.lifestyle.wants_kids
	kids2 = user2.lifestyle.wants_kids
	if _firm(kids1) and _firm(kids2) and kids1 is not kids2:
		return DealbreakerVerdict(compatible=False, reason=KIDS_CONFLICT)
	if not _interested_in(user1, user2.gender) or not _interested_in(user2, user1.gender):
		return DealbreakerVerdict(compatible=False, reason=GENDER_MISMATCH)
	return COMPATIBLE
