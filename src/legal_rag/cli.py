"""Command-line entry point.

Examples
--------
    legal-rag ingest /data/sentencias --glob "**/*.json"
    legal-rag resync --force
    legal-rag search "pensión alimenticia hijos menores" -k 5
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from legal_rag.cache.dedup import DedupIndex
from legal_rag.config import Settings, settings
from legal_rag.http import create_http_client
from legal_rag.ingestion.embedder import HttpEmbeddingClient
from legal_rag.ingestion.loader import load_directory
from legal_rag.ingestion.models import IngestOptions
from legal_rag.ingestion.orchestrator import IngestionOrchestrator
from legal_rag.retrieval.retriever import SemanticRetriever
from legal_rag.store import build_vector_store

logger = logging.getLogger("legal_rag")


def _print(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def _ingest(args: argparse.Namespace, cfg: Settings) -> int:
    overrides: dict[str, Any] = {}
    if args.collection:
        overrides["collection"] = args.collection
    if args.max_docs:
        overrides["max_concurrent_docs"] = args.max_docs
    if args.no_skip:
        overrides["skip_existing"] = False
    options = IngestOptions.from_settings(cfg, **overrides)
    documents = load_directory(args.path, args.glob)
    if not documents:
        logger.warning("No documents found under %s", args.path)
        return 0

    client = create_http_client(cfg)
    embedder = HttpEmbeddingClient(
        cfg.embedding_url, cfg.target_dimension, client=client, retry_wait=cfg.retry_wait_seconds
    )
    store = build_vector_store(cfg, client)
    try:
        async with DedupIndex.from_settings(cfg) as dedup:
            if not args.no_warmup and not await embedder.warmup():
                logger.warning("Continuing without a successful warmup")
            if args.resync:
                await dedup.resync(store, options.collection)
            orchestrator = IngestionOrchestrator(embedder, store, dedup, options=options)
            corpus = await orchestrator.ingest_corpus(documents)
    finally:
        await store.aclose()
        await client.aclose()

    summary = corpus.summary()
    if args.verbose_results:
        summary["results"] = [r.to_dict() for r in corpus.results]
    _print(summary)
    return 1 if corpus.failed else 0


async def _resync(args: argparse.Namespace, cfg: Settings) -> int:
    collection = args.collection or cfg.collection_name
    client = create_http_client(cfg)
    store = build_vector_store(cfg, client)
    try:
        async with DedupIndex.from_settings(cfg) as dedup:
            added = await dedup.resync(store, collection, force=args.force)
            _print({"collection": collection, "ids_scanned": added, "size": await dedup.size(), "backend": dedup.backend})
    finally:
        await store.aclose()
        await client.aclose()
    return 0


async def _search(args: argparse.Namespace, cfg: Settings) -> int:
    collection = args.collection or cfg.collection_name
    client = create_http_client(cfg)
    embedder = HttpEmbeddingClient(cfg.embedding_url, cfg.target_dimension, client=client)
    store = build_vector_store(cfg, client)
    try:
        retriever = SemanticRetriever(embedder, store, collection, score_threshold=args.threshold)
        results = await retriever.search(args.query, k=args.k)
    finally:
        await store.aclose()
        await client.aclose()
    _print([{"ref": r.citation.short_ref(), "score": r.citation.score, "content": r.content} for r in results])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="legal-rag", description="Legal document vector ingestion")
    parser.add_argument("--collection", help="Target collection (defaults to COLLECTION_NAME)")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Chunk, embed and upsert a directory of documents")
    ingest.add_argument("path", help="Directory of extracted .json/.txt/.md documents")
    ingest.add_argument("--glob", default="**/*", help="File-matching pattern")
    ingest.add_argument("--max-docs", type=int, help="Documents processed concurrently")
    ingest.add_argument("--resync", action="store_true", help="Resync the dedup index before ingesting")
    ingest.add_argument("--no-skip", action="store_true", help="Re-ingest documents already in the dedup index")
    ingest.add_argument("--no-warmup", action="store_true", help="Skip the embedding service warmup")
    ingest.add_argument("--verbose-results", action="store_true", help="Include per-document results")
    ingest.set_defaults(handler=_ingest)

    resync = sub.add_parser("resync", help="Rebuild the dedup index from the vector store")
    resync.add_argument("--force", action="store_true", help="Rescan even if the index looks in sync")
    resync.set_defaults(handler=_resync)

    search = sub.add_parser("search", help="Semantic search over ingested chunks")
    search.add_argument("query")
    search.add_argument("-k", type=int, default=5, help="Number of results")
    search.add_argument("--threshold", type=float, default=0.0, help="Minimum similarity score")
    search.set_defaults(handler=_search)
    return parser


def main(argv: list[str] | None = None, cfg: Settings | None = None) -> int:
    cfg = cfg or settings
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(args.handler(args, cfg))


if __name__ == "__main__":
    sys.exit(main())
