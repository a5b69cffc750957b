import importlib
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from gateway_rec.cache import LRUCache  # noqa: E402
from gateway_rec.collaborators import (  # noqa: E402
    FeatureEmbeddingService,
    InMemoryCatalog,
    InMemoryPreferenceStore,
    InMemorySocialGraph,
)
from gateway_rec.embedding_config import EmbeddingConfig  # noqa: E402
from gateway_rec.embeddings import FeatureEmbeddingGenerator  # noqa: E402
from gateway_rec.models import MediaContent, WatchContext, WatchEvent  # noqa: E402

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def reload_config(monkeypatch):
    """
    Reload config after env changes, and again once the env is restored so
    later tests see the defaults.
    """
    import gateway_rec.config as config

    def _reload():
        return importlib.reload(config)

    yield _reload
    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def generator():
    config = EmbeddingConfig(weights_path=None)
    return FeatureEmbeddingGenerator(config, LRUCache(max_size=100), now=lambda: FIXED_NOW)


@pytest.fixture
def embedding_service(generator):
    return FeatureEmbeddingService(generator)


@pytest.fixture
def store():
    return InMemoryPreferenceStore()


@pytest.fixture
def social_graph():
    return InMemorySocialGraph()


@pytest.fixture
def catalog_items():
    return [
        MediaContent(
            id="m1",
            title="Night Raid",
            overview="A relentless squad fights through the city during one violent night.",
            genres=["Action", "Thriller"],
            genre_ids=[28, 53],
            content_type="movie",
            popularity=80.0,
            vote_average=7.2,
            release_date="2021-03-01",
            runtime=110,
        ),
        MediaContent(
            id="m2",
            title="Laugh Track",
            overview="Two roommates stumble through a chaotic comedy of errors.",
            genres=["Comedy"],
            genre_ids=[35],
            content_type="movie",
            popularity=40.0,
            vote_average=6.5,
            release_date="2015-07-10",
            runtime=95,
        ),
        MediaContent(
            id="d1",
            title="Deep Oceans",
            overview="Marine biologists explore the hidden ecosystems beneath the waves.",
            genres=["Documentary"],
            genre_ids=[99],
            content_type="documentary",
            popularity=25.0,
            vote_average=8.1,
            release_date="2019-11-20",
            runtime=88,
        ),
        MediaContent(
            id="t1",
            title="Harbor Detectives",
            overview="Detectives untangle crimes along a foggy harbor town.",
            genres=["Crime", "Mystery", "Drama"],
            genre_ids=[80, 9648, 18],
            content_type="tv",
            popularity=60.0,
            vote_average=7.9,
            release_date="2022-01-15",
            runtime=50,
        ),
    ]


@pytest.fixture
def catalog(catalog_items, generator):
    return InMemoryCatalog(catalog_items, generator)


@pytest.fixture
def make_event():
    def _make(
        content_id="m1",
        completion_rate=1.0,
        rating=None,
        is_rewatch=False,
        duration=6000.0,
        total_duration=6000.0,
        day_of_week=5,
        hour_of_day=20,
        user_id="alice",
    ):
        return WatchEvent(
            user_id=user_id,
            content_id=content_id,
            duration=duration,
            total_duration=total_duration,
            completion_rate=completion_rate,
            rating=rating,
            is_rewatch=is_rewatch,
            context=WatchContext(day_of_week=day_of_week, hour_of_day=hour_of_day),
        )

    return _make
