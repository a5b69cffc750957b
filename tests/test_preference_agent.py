import numpy as np
import pytest

from gateway_rec.preference_agent import PreferenceAgent
from gateway_rec.profile import PreferenceProfile


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class NoEmbeddingService:
    def __init__(self):
        self.calls = 0

    async def generate(self, item):
        self.calls += 1
        return None


class ZeroEmbeddingService:
    async def generate(self, item):
        return np.zeros(64)


@pytest.mark.asyncio
async def test_cold_start_user_scores_neutral(store, embedding_service, catalog_items):
    agent = PreferenceAgent("alice", store, embedding_service)

    profile = await agent.get_preferences()
    assert profile.vector is None
    assert profile.confidence == 0.0
    for content in catalog_items:
        assert await agent.score_content(content) == 0.5


@pytest.mark.asyncio
async def test_cold_start_profile_is_not_persisted(store, embedding_service):
    agent = PreferenceAgent("alice", store, embedding_service)
    await agent.get_preferences()
    assert await store.get("alice") is None


@pytest.mark.asyncio
async def test_learning_persists_profile_and_shifts_scores(store, embedding_service, catalog_items, make_event):
    action, comedy, _, _ = catalog_items
    agent = PreferenceAgent("alice", store, embedding_service)

    updated = await agent.learn_from_watch_event(make_event(content_id="m1", rating=9), action)

    stored = await store.get("alice")
    assert stored is updated
    assert updated.vector is not None
    assert np.linalg.norm(updated.vector) == pytest.approx(1.0)
    assert updated.confidence == pytest.approx(0.1)
    assert updated.genre_affinities[28] > 0.5
    assert len(updated.temporal_patterns) == 1

    assert await agent.score_content(action) > await agent.score_content(comedy)


@pytest.mark.asyncio
async def test_learned_vector_does_not_alias_cached_embedding(store, embedding_service, catalog_items, make_event):
    action, comedy, _, _ = catalog_items
    agent = PreferenceAgent("alice", store, embedding_service)

    updated = await agent.learn_from_watch_event(make_event(content_id="m1", rating=9), action)
    cached = await embedding_service.generate(action)
    assert not np.shares_memory(updated.vector, cached)
    snapshot = cached.copy()

    await agent.learn_from_watch_event(make_event(content_id="m2", rating=8), comedy)
    assert np.linalg.norm(await embedding_service.generate(action)) == pytest.approx(1.0)
    assert np.array_equal(await embedding_service.generate(action), snapshot)


@pytest.mark.asyncio
async def test_repeated_strong_watches_raise_confidence(store, embedding_service, catalog_items, make_event):
    action = catalog_items[0]
    agent = PreferenceAgent("alice", store, embedding_service)

    confidences = []
    for _ in range(5):
        profile = await agent.learn_from_watch_event(make_event(rating=10), action)
        confidences.append(profile.confidence)

    assert confidences == sorted(confidences)
    assert confidences[-1] <= 0.95


@pytest.mark.asyncio
async def test_missing_embedding_leaves_profile_unchanged(store, catalog_items, make_event, caplog):
    agent = PreferenceAgent("alice", store, NoEmbeddingService())

    profile = await agent.learn_from_watch_event(make_event(), catalog_items[0])

    assert profile.vector is None
    assert await store.get("alice") is None
    assert "No embedding" in caplog.text


@pytest.mark.asyncio
async def test_score_is_neutral_for_missing_or_zero_embedding(store, catalog_items):
    await store.put("alice", PreferenceProfile(vector=np.ones(64) / 8, confidence=0.5))

    no_embedding = PreferenceAgent("alice", store, NoEmbeddingService())
    assert await no_embedding.score_content(catalog_items[0]) == 0.5

    zero_embedding = PreferenceAgent("alice", store, ZeroEmbeddingService())
    assert await zero_embedding.score_content(catalog_items[0]) == 0.5


@pytest.mark.asyncio
async def test_score_applies_genre_boost_and_clamps(store, embedding_service, catalog_items):
    action = catalog_items[0]
    embedding = await embedding_service.generate(action)

    await store.put("fan", PreferenceProfile(vector=embedding, confidence=0.5, genre_affinities={28: 1.0, 53: 1.0}))
    await store.put("plain", PreferenceProfile(vector=embedding, confidence=0.5))
    await store.put("hater", PreferenceProfile(vector=embedding, confidence=0.5, genre_affinities={28: 0.0}))

    fan = await PreferenceAgent("fan", store, embedding_service).score_content(action)
    plain = await PreferenceAgent("plain", store, embedding_service).score_content(action)
    hater = await PreferenceAgent("hater", store, embedding_service).score_content(action)

    assert fan == 1.0
    assert plain == pytest.approx(1.0)
    assert hater == pytest.approx(0.95)


@pytest.mark.asyncio
async def test_cached_profile_respects_ttl(store, embedding_service):
    clock = FakeClock()
    first = PreferenceProfile(confidence=0.3)
    second = PreferenceProfile(confidence=0.8)
    await store.put("alice", first)
    agent = PreferenceAgent("alice", store, embedding_service, ttl_seconds=60, clock=clock)

    assert await agent.get_preferences() is first
    await store.put("alice", second)

    clock.now = 30
    assert await agent.get_preferences() is first
    clock.now = 61
    assert await agent.get_preferences() is second


@pytest.mark.asyncio
async def test_personalized_query_blends_taste(store, embedding_service):
    agent = PreferenceAgent("alice", store, embedding_service)
    query = "a tense thriller at night"

    cold = await agent.get_personalized_query_embedding(query)
    assert np.allclose(cold, await embedding_service.generate(query))

    taste = np.zeros(64)
    taste[-1] = 1.0
    await store.put("alice", PreferenceProfile(vector=taste, confidence=0.9))
    warm = await PreferenceAgent("alice", store, embedding_service).get_personalized_query_embedding(query)
    assert warm[-1] > cold[-1]


@pytest.mark.asyncio
async def test_personalized_query_without_embedding(store):
    agent = PreferenceAgent("alice", store, NoEmbeddingService())
    assert await agent.get_personalized_query_embedding("anything") is None


@pytest.mark.asyncio
async def test_explain_recommendation(store, embedding_service, catalog_items):
    action, _, documentary, _ = catalog_items

    cold = PreferenceAgent("alice", store, embedding_service)
    assert await cold.explain_recommendation(action) == "You might enjoy this based on your interests"
    assert await cold.explain_recommendation(documentary) == "Critically acclaimed"

    embedding = await embedding_service.generate(action)
    await store.put("bob", PreferenceProfile(vector=embedding, confidence=0.7, genre_affinities={28: 0.9}))
    fan = PreferenceAgent("bob", store, embedding_service)
    assert await fan.explain_recommendation(action) == "Matches your genre preferences, highly matches your taste"


@pytest.mark.asyncio
async def test_top_genres_and_export(store, embedding_service):
    await store.put(
        "alice",
        PreferenceProfile(vector=np.ones(64), confidence=0.4, genre_affinities={28: 0.9, 35: 0.3, 18: 0.6}),
    )
    agent = PreferenceAgent("alice", store, embedding_service)

    top = await agent.get_top_genres(2)
    assert top == [{"genre_id": 28, "affinity": 0.9}, {"genre_id": 18, "affinity": 0.6}]

    exported = await agent.export_preferences()
    assert exported["user_id"] == "alice"
    assert "vector" not in exported
    assert [g["genre_id"] for g in exported["top_genres"]] == [28, 18, 35]
    assert "exported_at" in exported


@pytest.mark.asyncio
async def test_delete_preferences_drops_store_and_cache(store, embedding_service):
    await store.put("alice", PreferenceProfile(vector=np.ones(64), confidence=0.4))
    agent = PreferenceAgent("alice", store, embedding_service)
    await agent.get_preferences()

    await agent.delete_preferences()

    assert await store.get("alice") is None
    profile = await agent.get_preferences()
    assert profile.vector is None
