import asyncio

import pytest
from asyncpg.exceptions import ForeignKeyViolationError

from matchcore.domain.matching.exceptions import (
	InsufficientDataError,
	ProfileNotFound,
	SelfSwipeError,
	SwipeRateLimitExceeded,
	ValidationError,
)
from matchcore.domain.matching.lifecycle import SwipeService
from matchcore.domain.matching.models import SwipeType, pair_key
from matchcore.infra.store import StoreError


@pytest.fixture
def service(repo):
	return SwipeService(repo, swipe_rate_per_minute=1000)


@pytest.fixture
def couple(add_profile):
	alice = add_profile(name="Alice", gender="female", looking_for=["male"], interests=["Jazz"])
	bob = add_profile(name="Bob", interests=["jazz", "Chess"])
	return alice["id"], bob["id"]


@pytest.mark.asyncio
async def test_self_swipe_rejected(service, couple):
	alice, _ = couple
	with pytest.raises(SelfSwipeError):
		await service.like(alice, alice)
	with pytest.raises(SelfSwipeError):
		await service.pass_(alice, alice.upper())


@pytest.mark.asyncio
async def test_invalid_ids_rejected(service, couple):
	with pytest.raises(ValidationError):
		await service.like("not-a-uuid", couple[1])


@pytest.mark.asyncio
async def test_one_sided_like_does_not_match(service, couple, memory_store):
	alice, bob = couple
	outcome = await service.like(alice, bob)
	assert not outcome.matched
	assert outcome.match is None
	likes = memory_store.rows("likes")
	assert [(row["liker_id"], row["liked_id"]) for row in likes] == [(alice, bob)]
	assert memory_store.rows("matches") == []


@pytest.mark.asyncio
async def test_duplicate_like_is_idempotent(service, couple, memory_store):
	alice, bob = couple
	await service.like(alice, bob)
	outcome = await service.like(alice, bob)
	assert not outcome.matched
	assert len(memory_store.rows("likes")) == 1


@pytest.mark.asyncio
async def test_mutual_like_creates_match_and_notifies_target(service, couple, memory_store):
	alice, bob = couple
	await service.like(alice, bob)
	outcome = await service.like(bob, alice)

	assert outcome.matched
	assert outcome.other_user_id == alice
	match = outcome.match
	assert (match.user1_id, match.user2_id) == pair_key(alice, bob)
	assert match.compatibility_score == match.compatibility_breakdown["overallScore"]
	assert match.compatibility_breakdown["interests"]["shared"]

	notes = memory_store.rows("notifications")
	assert len(notes) == 1
	assert notes[0]["user_id"] == alice
	assert notes[0]["type"] == "new_match"
	assert notes[0]["data"]["match_id"] == match.id
	assert notes[0]["data"]["other_user_id"] == bob


@pytest.mark.asyncio
async def test_match_snapshot_is_order_independent(repo, couple, add_profile):
	alice, bob = couple
	first = await SwipeService(repo, swipe_rate_per_minute=1000).create_match(alice, bob)
	assert first[1] is True
	again, created = await SwipeService(repo, swipe_rate_per_minute=1000).create_match(bob, alice)
	assert created is False
	assert again.id == first[0].id


@pytest.mark.asyncio
async def test_concurrent_mutual_likes_create_one_match(service, couple, memory_store):
	alice, bob = couple
	outcomes = await asyncio.gather(service.like(alice, bob), service.like(bob, alice))

	assert len(memory_store.rows("matches")) == 1
	matched = [o for o in outcomes if o.matched]
	assert matched
	assert {o.match.id for o in matched} == {memory_store.rows("matches")[0]["id"]}
	assert len(memory_store.rows("notifications")) == 1


@pytest.mark.asyncio
async def test_undo_then_like_again_leaves_single_like(service, couple, memory_store):
	alice, bob = couple
	await service.like(alice, bob)
	assert await service.undo(alice, bob, SwipeType.LIKE) is True
	assert memory_store.rows("likes") == []
	await service.like(alice, bob)
	assert len(memory_store.rows("likes")) == 1


@pytest.mark.asyncio
async def test_undo_missing_swipe_is_noop(service, couple):
	alice, bob = couple
	assert await service.undo(alice, bob, SwipeType.PASS) is False


@pytest.mark.asyncio
async def test_pass_is_idempotent_and_undoable(service, couple, memory_store):
	alice, bob = couple
	outcome = await service.swipe(alice, bob, SwipeType.PASS)
	await service.swipe(alice, bob, SwipeType.PASS)
	assert not outcome.matched
	assert len(memory_store.rows("passes")) == 1
	assert await service.undo(alice, bob, SwipeType.PASS)
	assert memory_store.rows("passes") == []


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_match(service, couple, memory_store):
	alice, bob = couple
	memory_store.fail("insert:notifications", StoreError("permission denied", status=403))
	await service.like(alice, bob)
	outcome = await service.like(bob, alice)
	assert outcome.matched
	assert len(memory_store.rows("matches")) == 1
	assert memory_store.rows("notifications") == []


@pytest.mark.asyncio
async def test_match_requires_both_personalities(service, add_profile, memory_store):
	alice = add_profile(gender="female", looking_for=["male"])
	bob = add_profile(openness=None)
	await service.like(alice["id"], bob["id"])
	with pytest.raises(InsufficientDataError):
		await service.like(bob["id"], alice["id"])
	assert memory_store.rows("matches") == []


@pytest.mark.asyncio
async def test_swipe_rate_limit(repo, couple):
	alice, bob = couple
	limited = SwipeService(repo, swipe_rate_per_minute=2)
	await limited.like(alice, bob)
	await limited.pass_(alice, bob)
	with pytest.raises(SwipeRateLimitExceeded):
		await limited.like(alice, bob)


@pytest.mark.asyncio
async def test_get_matches_lists_both_sides(service, couple, add_profile):
	alice, bob = couple
	carl = add_profile(name="Carl")["id"]
	await service.create_match(alice, bob)
	await service.create_match(carl, alice)

	listings = await service.get_matches(alice)
	assert len(listings) == 2
	assert {listing.other_user_id for listing in listings} == {bob, carl}
	assert listings[0].match.matched_at >= listings[1].match.matched_at
	names = {listing.other_user_id: (listing.other_name, listing.other_age) for listing in listings}
	assert names == {bob: ("Bob", 30), carl: ("Carl", 30)}

	from_bob = await service.get_matches(bob)
	assert [listing.match for listing in from_bob] == [item.match for item in listings if item.other_user_id == bob]
	assert from_bob[0].other_name == "Alice"


@pytest.mark.asyncio
async def test_get_matches_without_discoverable_profile(service, couple, memory_store):
	alice, bob = couple
	await service.create_match(alice, bob)
	memory_store.tables["discovery_profiles"] = [r for r in memory_store.rows("discovery_profiles") if r["id"] != bob]

	(listing,) = await service.get_matches(alice)
	assert listing.other_user_id == bob
	assert (listing.other_name, listing.other_age) == (None, None)


@pytest.mark.asyncio
async def test_are_matched(service, couple, add_profile):
	alice, bob = couple
	carl = add_profile(name="Carl")["id"]
	assert await service.are_matched(alice, bob) is False
	await service.create_match(bob, alice)
	assert await service.are_matched(alice, bob) is True
	assert await service.are_matched(bob.upper(), alice) is True
	assert await service.are_matched(alice, carl) is False
	with pytest.raises(ValidationError):
		await service.are_matched(alice, alice)


@pytest.mark.asyncio
async def test_like_of_unknown_user_is_rejected(service, couple, memory_store):
	alice, bob = couple
	memory_store.fail("insert:likes", ForeignKeyViolationError("insert on table \"likes\" violates foreign key constraint"))
	with pytest.raises(ValidationError) as excinfo:
		await service.like(alice, bob)
	assert excinfo.value.reason == "unknown_target"
	assert memory_store.rows("likes") == []
	assert memory_store.calls["insert:likes"] == 1


@pytest.mark.asyncio
async def test_rest_foreign_key_conflict_is_not_a_duplicate(service, couple, memory_store):
	alice, bob = couple
	memory_store.fail("insert:passes", StoreError("violates foreign key constraint", status=409, code="23503"))
	with pytest.raises(ValidationError) as excinfo:
		await service.pass_(alice, bob)
	assert excinfo.value.reason == "unknown_target"
	assert memory_store.rows("passes") == []


@pytest.mark.asyncio
async def test_compatibility_breakdown(service, couple):
	alice, bob = couple
	breakdown = await service.compatibility(alice, bob)
	assert breakdown["personality"]["score"] == 100
	assert breakdown["interests"]["shared"] == ["Jazz"]
	assert set(breakdown) == {"overallScore", "personality", "interests", "values", "lifestyle", "reasons"}


@pytest.mark.asyncio
async def test_compatibility_errors(service, couple):
	alice, _ = couple
	with pytest.raises(ValidationError):
		await service.compatibility(alice, alice)
	with pytest.raises(ProfileNotFound):
		await service.compatibility(alice, "00000000-0000-4000-8000-0000000000ff")
