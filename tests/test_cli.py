import json
import sys
from dataclasses import asdict

import pytest

from gateway_rec import cli


def _run_cli(monkeypatch, argv, target=None, capture=None):
    if target is not None:
        monkeypatch.setattr(cli, target, lambda args: capture.append(args))
    monkeypatch.setattr(sys, "argv", argv)
    cli.main()


def _catalog_rows(catalog_items):
    rows = []
    for item in catalog_items:
        row = asdict(item)
        # Exercise the camelCase spelling as well
        row["voteAverage"] = row.pop("vote_average")
        row["releaseDate"] = row.pop("release_date")
        rows.append(row)
    return rows


@pytest.fixture
def catalog_file(tmp_path, catalog_items):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(_catalog_rows(catalog_items)))
    return path


def test_cli_dispatch_embed(monkeypatch):
    called = []
    _run_cli(monkeypatch, ["prog", "embed", "item.json", "--preset", "genre_heavy"], "cmd_embed", called)

    args = called[0]
    assert args.command == "embed"
    assert args.content == "item.json"
    assert args.preset == "genre_heavy"
    assert args.format == "text"


def test_cli_parses_rank_args(monkeypatch):
    called = []
    _run_cli(
        monkeypatch,
        [
            "prog", "rank", "catalog.json",
            "--genres", "Horror", "Drama",
            "--types", "movie",
            "--min-rating", "7.5",
            "--query", "slow burn",
            "--limit", "3",
            "--cache-size", "50",
        ],
        "cmd_rank",
        called,
    )

    args = called[0]
    assert args.genres == ["Horror", "Drama"]
    assert args.types == ["movie"]
    assert args.min_rating == 7.5
    assert args.query == "slow burn"
    assert args.limit == 3
    assert args.cache_size == 50


def test_cli_parses_group_args(monkeypatch):
    called = []
    _run_cli(
        monkeypatch,
        ["prog", "-v", "group", "members.json", "catalog.json", "--strategy", "least_misery", "--fairness", "0.4"],
        "cmd_group",
        called,
    )

    args = called[0]
    assert args.verbose is True
    assert args.strategy == "least_misery"
    assert args.fairness == 0.4
    assert args.limit == 10


def test_cli_rejects_unknown_strategy(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["prog", "group", "m.json", "c.json", "--strategy", "dictator"])
    with pytest.raises(SystemExit):
        cli.main()


def test_embed_json_output(monkeypatch, capsys, tmp_path, catalog_items):
    path = tmp_path / "item.json"
    path.write_text(json.dumps(_catalog_rows(catalog_items)[0]))

    _run_cli(monkeypatch, ["prog", "embed", str(path), "--format", "json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["id"] == "m1"
    assert payload["dimensions"] == 64
    assert len(payload["vector"]) == 64


def test_embed_missing_file_prints_nothing(monkeypatch, capsys, tmp_path, caplog):
    _run_cli(monkeypatch, ["prog", "embed", str(tmp_path / "missing.json"), "--format", "json"])

    assert capsys.readouterr().out == ""
    assert "File not found" in caplog.text


def test_rank_json_output(monkeypatch, capsys, catalog_file):
    _run_cli(monkeypatch, ["prog", "rank", str(catalog_file), "--genres", "Comedy", "--limit", "2", "--format", "json"])

    payload = json.loads(capsys.readouterr().out)
    results = payload["results"]
    assert len(results) == 2
    assert results[0]["id"] == "m2"
    assert results[0]["similarity"] >= results[1]["similarity"]
    assert payload["cache"]["misses"] >= 4


def test_rank_rejects_non_list_catalog(monkeypatch, capsys, tmp_path, caplog):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"id": "m1"}))

    _run_cli(monkeypatch, ["prog", "rank", str(path), "--format", "json"])

    assert capsys.readouterr().out == ""
    assert "must be a JSON list" in caplog.text


def test_explain_json_output(monkeypatch, capsys, tmp_path):
    path = tmp_path / "strategies.json"
    path.write_text(json.dumps({"collaborative": 0.8, "trending": 0.3}))

    _run_cli(monkeypatch, ["prog", "explain", str(path), "--content-id", "m1", "--format", "json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["content_id"] == "m1"
    assert [f["reason"] for f in payload["factors"]] == ["SIMILAR_TO_WATCHED", "TRENDING_NOW"]


def test_explain_text_output(monkeypatch, tmp_path, caplog):
    path = tmp_path / "strategies.json"
    path.write_text(json.dumps({"trending": 0.7}))

    with caplog.at_level("INFO"):
        _run_cli(monkeypatch, ["prog", "explain", str(path), "--content-id", "m1"])

    assert "Recommendation for Content #m1" in caplog.text
    assert "TRENDING_NOW" in caplog.text


def test_group_json_output(monkeypatch, capsys, tmp_path, catalog_file):
    members = tmp_path / "members.json"
    members.write_text(json.dumps({
        "alice": {"genres": ["Action"], "types": ["movie"], "confidence": 0.8},
        "bob": {"genres": ["Thriller", "Crime"]},
    }))

    _run_cli(
        monkeypatch,
        ["prog", "group", str(members), str(catalog_file), "--fairness", "0.0", "--format", "json"],
    )

    payload = json.loads(capsys.readouterr().out)
    assert payload["group_info"]["member_count"] == 2
    recommendations = payload["recommendations"]
    assert recommendations
    for rec in recommendations:
        assert set(rec["member_scores"]) == {"alice", "bob"}
        assert rec["why"]
    scores = [rec["group_score"] for rec in recommendations]
    assert scores == sorted(scores, reverse=True)


def test_group_needs_two_members(monkeypatch, capsys, tmp_path, catalog_file, caplog):
    members = tmp_path / "members.json"
    members.write_text(json.dumps({"alice": {"genres": ["Action"]}}))

    _run_cli(monkeypatch, ["prog", "group", str(members), str(catalog_file), "--format", "json"])

    assert capsys.readouterr().out == ""
    assert "at least 2 members" in caplog.text
