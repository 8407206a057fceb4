"""Domain models for profiles, swipes and matches."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Sequence
from uuid import UUID


class WantsKids(str, Enum):
	YES = "yes"
	NO = "no"
	MAYBE = "maybe"


class SwipeType(str, Enum):
	LIKE = "like"
	PASS = "pass"


DRINKING_SCALE = {"never": 0, "rarely": 1, "socially": 2, "regularly": 3}

POLITICS_SCALE = {
	"very_liberal": 0,
	"liberal": 1,
	"moderate": 2,
	"conservative": 3,
	"very_conservative": 4,
	"apolitical": 2,
}

TRAITS = ("openness", "conscientiousness", "extraversion", "agreeableness", "neuroticism")

PROFILES_VIEW = "discovery_profiles"
LIKES_TABLE = "likes"
PASSES_TABLE = "passes"
MATCHES_TABLE = "matches"
NOTIFICATIONS_TABLE = "notifications"


def _uuid_str(value: Any) -> str:
	return str(UUID(str(value)))


def _timestamp(value: Any) -> Optional[datetime]:
	if value is None or value == "":
		return None
	if isinstance(value, datetime):
		parsed = value
	else:
		parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


def _tags(value: Any) -> tuple[str, ...]:
	if value is None:
		return ()
	if isinstance(value, str):
		try:
			value = json.loads(value)
		except ValueError:
			return (value,)
	if isinstance(value, Mapping):
		value = list(value.keys())
	if not isinstance(value, (list, tuple, set, frozenset)):
		return ()
	return tuple(str(item) for item in value if item is not None and str(item).strip())


def _json(value: Any) -> Any:
	if isinstance(value, str):
		try:
			return json.loads(value)
		except ValueError:
			return value
	return value


def _optional_float(value: Any) -> Optional[float]:
	if value is None or value == "":
		return None
	return float(value)


@dataclass(slots=True, frozen=True)
class BigFive:
	openness: float
	conscientiousness: float
	extraversion: float
	agreeableness: float
	neuroticism: float

	def as_tuple(self) -> tuple[float, float, float, float, float]:
		return (self.openness, self.conscientiousness, self.extraversion, self.agreeableness, self.neuroticism)

	def as_dict(self) -> dict[str, float]:
		return dict(zip(TRAITS, self.as_tuple()))

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> Optional["BigFive"]:
		"""Return None unless all five traits are present."""
		values = [record.get(trait) for trait in TRAITS]
		if any(value is None for value in values):
			return None
		return cls(*(float(value) for value in values))


@dataclass(slots=True, frozen=True)
class Lifestyle:
	wants_kids: Optional[WantsKids] = None
	drinking: Optional[str] = None
	smoking: Optional[str] = None
	marijuana_use: Optional[str] = None
	religion: tuple[str, ...] = ()
	politics: Optional[str] = None

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "Lifestyle":
		kids = record.get("wants_kids")
		try:
			wants_kids = WantsKids(kids) if kids else None
		except ValueError:
			wants_kids = None
		return cls(
			wants_kids=wants_kids,
			drinking=record.get("drinking") or None,
			smoking=record.get("smoking") or None,
			marijuana_use=record.get("marijuana_use") or None,
			religion=_tags(record.get("religion")),
			politics=record.get("politics") or None,
		)


@dataclass(slots=True, frozen=True)
class UserProfile:
	"""A user's discovery profile joined with their personality profile."""

	id: str
	age: int
	gender: str
	looking_for: tuple[str, ...] = ()
	name: Optional[str] = None
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	lifestyle: Lifestyle = field(default_factory=Lifestyle)
	personality: Optional[BigFive] = None
	interests: tuple[str, ...] = ()
	values: tuple[str, ...] = ()
	traits: tuple[str, ...] = ()
	last_active_at: Optional[datetime] = None
	onboarding_completed: bool = False

	@property
	def has_location(self) -> bool:
		return self.latitude is not None and self.longitude is not None

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "UserProfile":
		return cls(
			id=_uuid_str(record["id"]),
			age=int(record.get("age") or 0),
			gender=str(record.get("gender") or ""),
			looking_for=_tags(record.get("looking_for")),
			name=record.get("name"),
			latitude=_optional_float(record.get("location_lat")),
			longitude=_optional_float(record.get("location_lng")),
			lifestyle=Lifestyle.from_record(record),
			personality=BigFive.from_record(record),
			interests=_tags(record.get("interests")),
			values=_tags(record.get("values")),
			traits=_tags(record.get("traits")),
			last_active_at=_timestamp(record.get("last_active_at")),
			onboarding_completed=bool(record.get("onboarding_completed")),
		)


@dataclass(slots=True, frozen=True)
class SwipeAction:
	actor_id: str
	target_id: str
	type: SwipeType
	created_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record: Mapping[str, Any], swipe_type: SwipeType) -> "SwipeAction":
		if swipe_type is SwipeType.LIKE:
			actor, target = record["liker_id"], record["liked_id"]
		else:
			actor, target = record["passer_id"], record["passed_id"]
		return cls(
			actor_id=_uuid_str(actor),
			target_id=_uuid_str(target),
			type=swipe_type,
			created_at=_timestamp(record.get("created_at")),
		)


def pair_key(user_a: str, user_b: str) -> tuple[str, str]:
	"""Canonical ordering for an unordered pair: lower id first."""
	a, b = _uuid_str(user_a), _uuid_str(user_b)
	return (a, b) if a < b else (b, a)


@dataclass(slots=True)
class Match:
	id: str
	user1_id: str
	user2_id: str
	compatibility_score: int
	compatibility_breakdown: dict[str, Any]
	matched_at: Optional[datetime] = None
	blur_points: int = 0
	is_unblurred: bool = False

	def other_user(self, user_id: str) -> str:
		return self.user2_id if _uuid_str(user_id) == self.user1_id else self.user1_id

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "Match":
		breakdown = _json(record.get("compatibility_breakdown")) or {}
		return cls(
			id=_uuid_str(record["id"]),
			user1_id=_uuid_str(record["user1_id"]),
			user2_id=_uuid_str(record["user2_id"]),
			compatibility_score=int(record.get("compatibility_score") or 0),
			compatibility_breakdown=breakdown if isinstance(breakdown, dict) else {},
			matched_at=_timestamp(record.get("matched_at") or record.get("created_at")),
			blur_points=int(record.get("blur_points") or 0),
			is_unblurred=bool(record.get("is_unblurred")),
		)


@dataclass(slots=True, frozen=True)
class Notification:
	user_id: str
	type: str
	title: str
	body: str
	data: Mapping[str, Any] = field(default_factory=dict)

	def to_record(self) -> dict[str, Any]:
		return {
			"user_id": self.user_id,
			"type": self.type,
			"title": self.title,
			"body": self.body,
			"data": dict(self.data),
		}


@dataclass(slots=True, frozen=True)
class SwipeOutcome:
	matched: bool
	match: Optional[Match] = None
	other_user_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class MatchListing:
	"""A match as seen by one side, with the other user's display fields."""

	match: Match
	other_user_id: str
	other_name: Optional[str] = None
	other_age: Optional[int] = None

	@classmethod
	def for_viewer(cls, match: Match, viewer_id: str, profile: Optional[UserProfile] = None) -> "MatchListing":
		return cls(
			match=match,
			other_user_id=match.other_user(viewer_id),
			other_name=profile.name if profile is not None else None,
			other_age=(profile.age or None) if profile is not None else None,
		)


def unique_ids(values: Sequence[Any]) -> set[str]:
	return {_uuid_str(value) for value in values if value}
