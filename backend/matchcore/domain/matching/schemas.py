"""Schemas for the discovery feed, swipes, matches and compatibility."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from matchcore.domain.matching.models import SwipeType


class FeedCandidate(BaseModel):
	user_id: UUID
	name: Optional[str] = None
	age: int
	gender: str
	interests: list[str] = Field(default_factory=list)
	personality_score: int = Field(ge=0, le=100)
	interest_score: int = Field(ge=0, le=100)
	lifestyle_score: int = Field(ge=0, le=100)
	overall_score: int = Field(ge=0, le=100)
	reasons: list[str] = Field(default_factory=list, max_length=3)
	distance_miles: Optional[int] = None
	last_active_at: Optional[datetime] = None


class FeedResponse(BaseModel):
	items: list[FeedCandidate] = Field(default_factory=list)
	next_offset: int = 0
	exhausted: bool = False


class SwipePayload(BaseModel):
	target_id: UUID
	type: SwipeType


class SwipeResponse(BaseModel):
	matched: bool
	match_id: Optional[UUID] = None
	compatibility: Optional[int] = None
	other_user_id: Optional[UUID] = None


class MatchSummary(BaseModel):
	id: UUID
	other_user_id: UUID
	other_user_name: Optional[str] = None
	other_user_age: Optional[int] = None
	compatibility_score: int
	matched_at: Optional[datetime] = None
	blur_points: int = 0
	is_unblurred: bool = False


class MatchListResponse(BaseModel):
	items: list[MatchSummary] = Field(default_factory=list)


class MatchStatusResponse(BaseModel):
	other_user_id: UUID
	matched: bool


class TagBreakdown(BaseModel):
	score: int
	shared: list[str] = Field(default_factory=list)
	unique: dict[str, list[str]] = Field(default_factory=dict)


class TraitDetail(BaseModel):
	user1: float
	user2: float
	difference: float


class PersonalityBreakdown(BaseModel):
	score: int
	details: dict[str, TraitDetail] = Field(default_factory=dict)


class LifestyleBreakdown(BaseModel):
	score: int
	compatible: list[str] = Field(default_factory=list)
	neutral: list[str] = Field(default_factory=list)


class CompatibilityResponse(BaseModel):
	overallScore: int
	personality: PersonalityBreakdown
	interests: TagBreakdown
	values: TagBreakdown
	lifestyle: LifestyleBreakdown
	reasons: list[str] = Field(default_factory=list)
