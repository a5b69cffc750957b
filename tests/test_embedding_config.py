import json

import pytest

from gateway_rec.embedding_config import (
    DEFAULT_GENRE_KEY,
    GENRE_VECTORS,
    WEIGHT_PRESETS,
    EmbeddingConfig,
    EmbeddingWeights,
    load_embedding_weights,
    save_embedding_weights,
)


def test_default_layout_is_64_dims():
    config = EmbeddingConfig(weights_path=None)
    assert config.dimensions == 64
    assert config.weights == EmbeddingWeights()
    assert config.weights.genre == pytest.approx(0.30)
    assert config.weights.keywords == pytest.approx(0.30)


def test_genre_table_is_read_only_and_lowercased():
    config = EmbeddingConfig(
        weights_path=None,
        genre_vectors={"Noir": (0.1,) * 10, DEFAULT_GENRE_KEY: (0.5,) * 10},
    )
    assert "noir" in config.genre_vectors
    with pytest.raises(TypeError):
        config.genre_vectors["noir"] = (0.0,) * 10
    # The module-level table is untouched
    assert "noir" not in GENRE_VECTORS


def test_genre_table_must_have_default_and_right_dims():
    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, genre_vectors={"action": (1.0,) * 10})
    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, genre_vectors={DEFAULT_GENRE_KEY: (0.5,) * 3})


def test_invalid_dimensions_and_weights_rejected():
    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, keyword_dims=0)
    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, type_dims=4)
    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, weights=EmbeddingWeights(genre=-1.0))
    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, weights=EmbeddingWeights(0, 0, 0, 0))


def test_weights_accept_mapping_and_presets():
    config = EmbeddingConfig(weights_path=None, weights={"genre": 0.5})
    assert config.weights.genre == pytest.approx(0.5)
    assert config.weights.type == pytest.approx(0.15)

    preset = EmbeddingConfig(weights_path=None, weights_preset="text_heavy")
    assert preset.weights == WEIGHT_PRESETS["text_heavy"]

    with pytest.raises(ValueError):
        EmbeddingConfig(weights_path=None, weights_preset="nope")


def test_weights_file_overrides_defaults(tmp_path):
    path = tmp_path / "weights.json"
    path.write_text(json.dumps({"genre": 0.6, "keywords": 0.1}))

    config = EmbeddingConfig(weights_path=path)

    assert config.weights.genre == pytest.approx(0.6)
    assert config.weights.keywords == pytest.approx(0.1)
    assert config.weights.metadata == pytest.approx(0.25)


def test_load_embedding_weights_handles_missing_and_invalid(tmp_path):
    assert load_embedding_weights(tmp_path / "missing.json") is None

    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{not json")
    assert load_embedding_weights(bad_json) is None

    negative = tmp_path / "negative.json"
    negative.write_text(json.dumps({"genre": -0.2}))
    assert load_embedding_weights(negative) is None

    wrong_shape = tmp_path / "list.json"
    wrong_shape.write_text(json.dumps([0.1, 0.2]))
    assert load_embedding_weights(wrong_shape) is None


def test_save_embedding_weights_round_trips(tmp_path):
    weights = EmbeddingWeights(genre=0.4, type=0.2, metadata=0.2, keywords=0.2)
    path = tmp_path / "nested" / "saved.json"

    saved_path = save_embedding_weights(weights, path)
    assert saved_path.exists()
    assert load_embedding_weights(saved_path) == weights


def test_fingerprint_tracks_configuration():
    a = EmbeddingConfig(weights_path=None)
    b = EmbeddingConfig(weights_path=None)
    c = EmbeddingConfig(weights_path=None, weights_preset="genre_heavy")

    assert a.fingerprint == b.fingerprint
    assert a.fingerprint != c.fingerprint
    assert len(a.fingerprint) == 12
