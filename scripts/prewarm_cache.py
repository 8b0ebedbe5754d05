"""
Pre-warm the static cache tier: run every popular query against the search
backend and write one <slug>.json per query plus a manifest.json.

    python -m scripts.prewarm_cache --out static/cache
"""
import argparse
import asyncio
import json
import os
import time
from typing import List

from tqdm import tqdm

from podsearch import config
from podsearch.backends import create_search_backend
from podsearch.cache_service import POPULAR_QUERIES, slugify
from podsearch.models import CACHE_METADATA_FIELDS, CachedResult, CacheFile, CacheManifest, ManifestEntry, ManifestStats
from podsearch.search_service import SearchService
from podsearch.validation import sanitize_search_query

MANIFEST_VERSION = "1"
STATIC_TTL_MS = 7 * 24 * 60 * 60 * 1000  # 7 days


def write_json(path: str, payload: dict) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


async def prewarm(service: SearchService, out_dir: str, queries: List[str] = POPULAR_QUERIES) -> CacheManifest:
    os.makedirs(out_dir, exist_ok=True)
    entries: List[ManifestEntry] = []

    for query in tqdm(queries, desc="Pre-warming"):
        try:
            result = await service.search(query)
            now = int(time.time() * 1000)
            file_name = slugify(sanitize_search_query(query))
            cache_file = CacheFile(
                query=query,
                timestamp=now,
                expires_at=now + STATIC_TTL_MS,
                result=CachedResult(hits=result.items, stats=result.stats, has_more=result.has_more),
            )
            payload = cache_file.model_dump(
                mode="json",
                by_alias=True,
                exclude={"result": {"stats": CACHE_METADATA_FIELDS}},
            )
            write_json(os.path.join(out_dir, f"{file_name}.json"), payload)
            entries.append(
                ManifestEntry(
                    query=query,
                    file_name=file_name,
                    hit_count=len(result.items),
                    total_hits=result.total,
                    cached=True,
                )
            )
        except Exception as e:
            # one bad query should not stop the rest of the batch
            tqdm.write(f"[WARN] Failed to cache {query!r}: {e}")
            entries.append(ManifestEntry(query=query, cached=False, error=str(e)))

    cached = [e for e in entries if e.cached]
    manifest = CacheManifest(
        generated=int(time.time() * 1000),
        version=MANIFEST_VERSION,
        queries=entries,
        stats=ManifestStats(
            total=len(entries),
            cached=len(cached),
            failed=len(entries) - len(cached),
            total_hits=sum(e.total_hits for e in cached),
        ),
    )
    write_json(os.path.join(out_dir, "manifest.json"), manifest.model_dump(mode="json", by_alias=True))
    return manifest


async def main(out_dir: str, backend_name: str) -> int:
    backend = create_search_backend(backend_name)
    # no cache: results must come from the backend
    service = SearchService(backend, cache=None)
    try:
        manifest = await prewarm(service, out_dir)
    finally:
        await backend.aclose()

    print(f"[OK] Cached {manifest.stats.cached}/{manifest.stats.total} queries → {out_dir}")
    if manifest.stats.failed:
        print(f"[WARN] {manifest.stats.failed} queries failed, see manifest.json")
    return 1 if manifest.stats.cached == 0 else 0


if __name__ == "__main__":
    p = argparse.ArgumentParser()
    p.add_argument("--out", default=config.STATIC_CACHE_DIR, help="Directory for <slug>.json files")
    p.add_argument("--backend", default=config.SEARCH_BACKEND, choices=["meilisearch", "supabase"])
    args = p.parse_args()

    raise SystemExit(asyncio.run(main(args.out, args.backend)))
