"""Pure compatibility scoring: personality, tag overlap, lifestyle and distance.

All scores are integers on a 0-100 scale. Rounding is half-up, not Python's
round-half-even, so a 92.5 becomes 93 on every platform.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from matchcore.domain.matching.exceptions import InsufficientDataError
from matchcore.domain.matching.models import (
	DRINKING_SCALE,
	POLITICS_SCALE,
	TRAITS,
	BigFive,
	Lifestyle,
	UserProfile,
	WantsKids,
)

EARTH_RADIUS_MILES = 3959.0

PERSONALITY_WEIGHT = 0.5
INTERESTS_WEIGHT = 0.25
LIFESTYLE_WEIGHT = 0.25

MAX_REASONS = 3


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
	return max(0, min(100, round_half_up(value)))


def _normalise_tags(tags: Iterable[str]) -> set[str]:
	return {str(tag).strip().lower() for tag in tags if str(tag).strip()}


def personality_score(a: BigFive, b: BigFive) -> int:
	"""Normalised Euclidean similarity of two Big-Five vectors."""
	squared = sum((x - y) ** 2 for x, y in zip(a.as_tuple(), b.as_tuple()))
	distance = math.sqrt(squared / len(TRAITS))
	return clamp_score((1 - distance / 100) * 100)


def jaccard_score(a: Iterable[str], b: Iterable[str]) -> int:
	"""Case-insensitive Jaccard overlap; two empty sets score 0."""
	left, right = _normalise_tags(a), _normalise_tags(b)
	union = left | right
	if not union:
		return 0
	return clamp_score(len(left & right) / len(union) * 100)


@dataclass(slots=True, frozen=True)
class LifestyleResult:
	score: int
	compatible: tuple[str, ...] = ()
	neutral: tuple[str, ...] = ()


def _ordinal_distance(scale: dict[str, int], a: Optional[str], b: Optional[str]) -> Optional[int]:
	if not a or not b or a not in scale or b not in scale:
		return None
	return abs(scale[a] - scale[b])


def lifestyle_score(a: Lifestyle, b: Lifestyle) -> LifestyleResult:
	score = 100
	compatible: list[str] = []
	neutral: list[str] = []

	if a.wants_kids is not None and b.wants_kids is not None:
		if a.wants_kids is b.wants_kids:
			compatible.append("wants_kids")
			score += 10
		elif WantsKids.MAYBE in (a.wants_kids, b.wants_kids):
			neutral.append("wants_kids")
		else:
			neutral.append("wants_kids")
			score -= 30

	if a.religion and b.religion:
		overlap = jaccard_score(a.religion, b.religion)
		if overlap > 50:
			compatible.append("religion")
			score += round_half_up(overlap * 0.2)
		elif overlap > 0:
			neutral.append("religion")

	for label, left, right in (
		("drinking", a.drinking, b.drinking),
		("smoking", a.smoking, b.smoking),
		("marijuana", a.marijuana_use, b.marijuana_use),
	):
		diff = _ordinal_distance(DRINKING_SCALE, left, right)
		if diff is None:
			continue
		if diff == 0:
			compatible.append(label)
			score += 10
		elif diff == 1:
			compatible.append(label)
			score += 5
		else:
			neutral.append(label)
			score -= diff * 3

	diff = _ordinal_distance(POLITICS_SCALE, a.politics, b.politics)
	if diff is not None:
		if diff == 0:
			compatible.append("politics")
			score += 10
		elif diff <= 1:
			compatible.append("politics")
			score += 5
		else:
			neutral.append("politics")
			score -= diff * 5

	return LifestyleResult(score=clamp_score(score), compatible=tuple(compatible), neutral=tuple(neutral))


@dataclass(slots=True, frozen=True)
class Distance:
	miles: int = 0
	known: bool = False


UNKNOWN_DISTANCE = Distance()


def distance_miles(a: UserProfile, b: UserProfile) -> Distance:
	"""Haversine distance in whole miles, or an unknown distance when either side lacks coordinates."""
	if not a.has_location or not b.has_location:
		return UNKNOWN_DISTANCE
	lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
	lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
	dlat = lat2 - lat1
	dlon = lon2 - lon1
	h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
	c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
	return Distance(miles=round_half_up(EARTH_RADIUS_MILES * c), known=True)


def combined_interest_score(interests: int, values: int) -> int:
	return clamp_score((interests + values) / 2)


def overall_score(personality: int, interests: int, values: int, lifestyle: int) -> int:
	combined = combined_interest_score(interests, values)
	return clamp_score(personality * PERSONALITY_WEIGHT + combined * INTERESTS_WEIGHT + lifestyle * LIFESTYLE_WEIGHT)


def shared_tags(primary: Sequence[str], other: Sequence[str]) -> list[str]:
	"""Tags of ``primary`` (in its order) that also appear in ``other``, compared case-insensitively."""
	others = _normalise_tags(other)
	seen: set[str] = set()
	shared: list[str] = []
	for tag in primary:
		key = str(tag).strip().lower()
		if key and key in others and key not in seen:
			seen.add(key)
			shared.append(str(tag).strip())
	return shared


def unique_tags(primary: Sequence[str], other: Sequence[str]) -> list[str]:
	others = _normalise_tags(other)
	return [str(tag).strip() for tag in primary if str(tag).strip() and str(tag).strip().lower() not in others]


def preview_reasons(
	personality: int,
	shared_interests: Sequence[str],
	lifestyle: LifestyleResult,
	requester: Lifestyle,
) -> list[str]:
	reasons: list[str] = []
	if personality >= 80:
		reasons.append("Very similar personalities")
	elif personality >= 70:
		reasons.append("Compatible personalities")
	if shared_interests:
		reasons.append(f"Both love {' & '.join(shared_interests[:2])}")
	if "wants_kids" in lifestyle.compatible:
		if requester.wants_kids is WantsKids.YES:
			reasons.append("Both want kids")
		elif requester.wants_kids is WantsKids.NO:
			reasons.append("Both child-free")
	if "religion" in lifestyle.compatible:
		reasons.append("Share religious values")
	return reasons[:MAX_REASONS]


@dataclass(slots=True, frozen=True)
class CompatibilityScore:
	personality_score: int
	interest_score: int
	lifestyle_score: int
	overall_score: int
	reasons: tuple[str, ...] = ()
	values_score: int = 0
	lifestyle: LifestyleResult = field(default_factory=lambda: LifestyleResult(score=100))


def _require_personality(profile: UserProfile) -> BigFive:
	if profile.personality is None:
		raise InsufficientDataError("missing_personality")
	return profile.personality


def score_pair(requester: UserProfile, candidate: UserProfile) -> CompatibilityScore:
	"""Score ``candidate`` from the requester's point of view."""
	personality = personality_score(_require_personality(requester), _require_personality(candidate))
	interests = jaccard_score(requester.interests, candidate.interests)
	values = jaccard_score(requester.values, candidate.values)
	lifestyle = lifestyle_score(requester.lifestyle, candidate.lifestyle)
	reasons = preview_reasons(
		personality,
		shared_tags(requester.interests, candidate.interests),
		lifestyle,
		requester.lifestyle,
	)
	return CompatibilityScore(
		personality_score=personality,
		interest_score=combined_interest_score(interests, values),
		lifestyle_score=lifestyle.score,
		overall_score=overall_score(personality, interests, values, lifestyle.score),
		reasons=tuple(reasons),
		values_score=values,
		lifestyle=lifestyle,
	)


def _tag_breakdown(score: int, left: Sequence[str], right: Sequence[str]) -> dict[str, Any]:
	return {
		"score": score,
		"shared": shared_tags(left, right),
		"unique": {"user1": unique_tags(left, right), "user2": unique_tags(right, left)},
	}


def compatibility_breakdown(user1: UserProfile, user2: UserProfile) -> dict[str, Any]:
	"""Full JSON-ready snapshot stored on a match and served by the compatibility endpoint."""
	result = score_pair(user1, user2)
	a = _require_personality(user1).as_dict()
	b = _require_personality(user2).as_dict()
	details = {trait: {"user1": a[trait], "user2": b[trait], "difference": abs(a[trait] - b[trait])} for trait in TRAITS}
	return {
		"overallScore": result.overall_score,
		"personality": {"score": result.personality_score, "details": details},
		"interests": _tag_breakdown(jaccard_score(user1.interests, user2.interests), user1.interests, user2.interests),
		"values": _tag_breakdown(result.values_score, user1.values, user2.values),
		"lifestyle": {
			"score": result.lifestyle.score,
			"compatible": list(result.lifestyle.compatible),
			"neutral": list(result.lifestyle.neutral),
		},
		"reasons": list(result.reasons),
	}
