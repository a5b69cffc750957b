import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from tqdm import tqdm

from .cache import LRUCache
from .collaborators import FeatureEmbeddingService, InMemoryCatalog, InMemoryPreferenceStore
from .config import DEFAULT_CACHE_SIZE, DEFAULT_QUERY_WEIGHT, EXPLANATION_MAX_FACTORS, FAIRNESS_THRESHOLD
from .embedding_config import WEIGHT_PRESETS, EmbeddingConfig
from .embeddings import FeatureEmbeddingGenerator
from .explanation import RecommendationExplainer, format_explanation_as_text
from .group_recommender import AggregationStrategy, GroupConsensusEngine
from .models import MediaContent, TastePreferences
from .profile import PreferenceProfile
from .similarity import combine_weighted, top_k

logger = logging.getLogger(__name__)


def _read_json(path: str):
    """Read a JSON file, logging and returning None if it is missing or malformed."""
    file_path = Path(path)
    if not file_path.exists():
        logger.error("File not found: %s", path)
        return None
    try:
        return json.loads(file_path.read_text())
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON in %s: %s", path, exc)
        return None


def _load_catalog(path: str) -> list[MediaContent] | None:
    rows = _read_json(path)
    if rows is None:
        return None
    if not isinstance(rows, list):
        logger.error("Catalog %s must be a JSON list of content objects", path)
        return None
    return [MediaContent.from_dict(row) for row in rows]


def _build_generator(args: argparse.Namespace) -> FeatureEmbeddingGenerator:
    config = EmbeddingConfig(weights_preset=getattr(args, "preset", None))
    return FeatureEmbeddingGenerator(config, LRUCache(max_size=getattr(args, "cache_size", DEFAULT_CACHE_SIZE)))


def _embed_catalog(generator: FeatureEmbeddingGenerator, catalog: list[MediaContent]) -> list[tuple[str, object]]:
    return [(content.id, generator.embed_content(content)) for content in tqdm(catalog, desc="Embedding")]


def cmd_embed(args: argparse.Namespace) -> None:
    """Print the feature vector of a single content item."""
    payload = _read_json(args.content)
    if payload is None:
        return

    generator = _build_generator(args)
    content = MediaContent.from_dict(payload)
    vector = generator.embed_content(content)

    if args.format == "json":
        print(json.dumps({"id": content.id, "dimensions": len(vector), "vector": [round(float(v), 6) for v in vector]}))
        return

    logger.info(f"{content.title or content.id}: {len(vector)} dims (config {generator.config.fingerprint})")
    logger.info("  " + " ".join(f"{v:.3f}" for v in vector))


def cmd_rank(args: argparse.Namespace) -> None:
    """Rank a catalog against declared tastes and an optional free-text query."""
    catalog = _load_catalog(args.catalog)
    if catalog is None:
        return
    if not catalog:
        logger.warning("Catalog is empty")
        return

    generator = _build_generator(args)
    embedded = _embed_catalog(generator, catalog)

    prefs = TastePreferences(
        favorite_genres=args.genres or [],
        preferred_content_types=args.types or [],
        rating_threshold=args.min_rating,
    )
    target = generator.embed_preferences(prefs)
    if args.query:
        query_vec = generator.embed_text(args.query)
        target = combine_weighted([query_vec, target], [DEFAULT_QUERY_WEIGHT, 1 - DEFAULT_QUERY_WEIGHT])

    ranked = top_k(target, embedded, args.limit)
    titles = {c.id: c.title for c in catalog}
    stats = generator.cache_stats()

    if args.format == "json":
        output = [{"id": cid, "title": titles.get(cid), "similarity": round(sim, 4)} for cid, sim in ranked]
        print(json.dumps({"results": output, "cache": asdict(stats)}, indent=2))
        return

    logger.info(f"\nTop {len(ranked)} of {len(catalog)} titles:\n")
    for i, (cid, sim) in enumerate(ranked, 1):
        logger.info(f"{i}. {titles.get(cid, cid)} [{cid}]  similarity {sim:.3f}")
    logger.info(
        f"\nCache: {stats.size}/{stats.max_size} entries, "
        f"{stats.hits} hits / {stats.misses} misses ({stats.hit_rate:.0%})"
    )


def cmd_explain(args: argparse.Namespace) -> None:
    """Explain a recommendation from a {strategy: score} JSON mapping."""
    strategies = _read_json(args.strategies)
    if strategies is None:
        return
    if not isinstance(strategies, dict):
        logger.error("Expected a JSON object mapping strategy names to scores")
        return

    explainer = RecommendationExplainer(max_factors=args.max_factors)
    explanation = explainer.generate_explanation(args.content_id, args.user_id, strategies)

    if args.format == "json":
        print(explainer.export_explanation(explanation))
        return
    logger.info(format_explanation_as_text(explanation))


async def _run_group_session(
    members: dict[str, dict],
    catalog: list[MediaContent],
    generator: FeatureEmbeddingGenerator,
    strategy: AggregationStrategy,
    fairness_threshold: float,
):
    store = InMemoryPreferenceStore()
    for user_id, taste in members.items():
        prefs = TastePreferences(
            favorite_genres=taste.get("genres", []),
            preferred_content_types=taste.get("types", []),
            rating_threshold=taste.get("min_rating"),
        )
        await store.put(
            user_id,
            PreferenceProfile(vector=generator.embed_preferences(prefs), confidence=float(taste.get("confidence", 0.5))),
        )

    engine = GroupConsensusEngine(
        store,
        FeatureEmbeddingService(generator),
        InMemoryCatalog(catalog, generator),
        strategy=strategy,
        fairness_threshold=fairness_threshold,
    )
    member_ids = list(members)
    session = await engine.create_session("cli", member_ids[0], member_ids)
    group_info = await engine.explain_group(member_ids)
    return engine, session, group_info


def cmd_group(args: argparse.Namespace) -> None:
    """Rank a catalog for a group of members described by declared tastes."""
    members = _read_json(args.members)
    catalog = _load_catalog(args.catalog)
    if members is None or catalog is None:
        return
    if not isinstance(members, dict) or len(members) < 2:
        logger.error("Need at least 2 members for group recommendations")
        return

    generator = _build_generator(args)
    _embed_catalog(generator, catalog)

    engine, session, group_info = asyncio.run(
        _run_group_session(
            members, catalog, generator, AggregationStrategy(args.strategy), args.fairness
        )
    )
    candidates = session.candidates[: args.limit]

    if args.format == "json":
        output = [
            {
                "id": c.content.id,
                "title": c.content.title,
                "group_score": round(c.group_score, 4),
                "fairness": round(c.fairness_score, 4),
                "member_scores": {k: round(v, 4) for k, v in c.member_scores.items()},
                "why": engine.get_explanation(c),
            }
            for c in candidates
        ]
        print(json.dumps({"group_info": group_info, "recommendations": output}, indent=2))
        return

    logger.info("Group Dynamics:")
    logger.info(f"  Compatibility: {group_info['overall_compatibility']} - {group_info['compatibility_label']}")
    if group_info.get("best_pair"):
        logger.info(f"  Best match: {group_info['best_pair']}")
    if group_info.get("challenging_pair"):
        logger.info(f"  Most different: {group_info['challenging_pair']}")

    if not candidates:
        logger.info("\nNo title cleared the fairness threshold.")
        return

    logger.info(f"\nTop {len(candidates)} titles for your group:\n")
    for i, c in enumerate(candidates, 1):
        logger.info(f"{i}. {c.content.title} [{c.content.id}]")
        logger.info(f"   Group Score: {c.group_score:.3f} | Fairness: {c.fairness_score:.0%}")
        score_parts = [f"{user}: {score:.2f}" for user, score in c.member_scores.items()]
        logger.info(f"   Individual: {' | '.join(score_parts)}")
        logger.info(f"   Why: {engine.get_explanation(c)}")


def main():
    parser = argparse.ArgumentParser(description="Gateway personalization and group-consensus scoring")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_embedding_options(sub):
        sub.add_argument("--preset", choices=sorted(WEIGHT_PRESETS), help="Sub-vector weight preset")
        sub.add_argument("--cache-size", type=int, default=DEFAULT_CACHE_SIZE, help="Embedding cache capacity")
        sub.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    embed_parser = subparsers.add_parser("embed", help="Print the feature vector of a content item")
    embed_parser.add_argument("content", help="JSON file with one content object")
    add_embedding_options(embed_parser)
    embed_parser.set_defaults(func=cmd_embed)

    rank_parser = subparsers.add_parser("rank", help="Rank a catalog against declared tastes")
    rank_parser.add_argument("catalog", help="JSON file with a list of content objects")
    rank_parser.add_argument("--genres", nargs="+", help="Favorite genres")
    rank_parser.add_argument("--types", nargs="+", help="Preferred content types (movie, tv, documentary)")
    rank_parser.add_argument("--min-rating", type=float, help="Rating threshold (0-10)")
    rank_parser.add_argument("--query", help="Free-text query blended into the taste vector")
    rank_parser.add_argument("--limit", type=int, default=10, help="Number of results")
    add_embedding_options(rank_parser)
    rank_parser.set_defaults(func=cmd_rank)

    explain_parser = subparsers.add_parser("explain", help="Explain a recommendation from strategy scores")
    explain_parser.add_argument("strategies", help="JSON file mapping strategy names to scores")
    explain_parser.add_argument("--content-id", default="content", help="Content id shown in the explanation")
    explain_parser.add_argument("--user-id", default="user", help="User the explanation is for")
    explain_parser.add_argument("--max-factors", type=int, default=EXPLANATION_MAX_FACTORS, help="Maximum factors")
    explain_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    explain_parser.set_defaults(func=cmd_explain)

    group_parser = subparsers.add_parser("group", help="Rank a catalog for a group of members")
    group_parser.add_argument("members", help="JSON object: user id -> {genres, types, confidence}")
    group_parser.add_argument("catalog", help="JSON file with a list of content objects")
    group_parser.add_argument(
        "--strategy",
        choices=[s.value for s in AggregationStrategy],
        default=AggregationStrategy.MAXIMIN.value,
        help="Aggregation strategy",
    )
    group_parser.add_argument("--fairness", type=float, default=FAIRNESS_THRESHOLD, help="Minimum fairness score")
    group_parser.add_argument("--limit", type=int, default=10, help="Number of results")
    add_embedding_options(group_parser)
    group_parser.set_defaults(func=cmd_group)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
