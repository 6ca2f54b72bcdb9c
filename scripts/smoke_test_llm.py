#!/usr/bin/env python3
"""Smoke-test the AI grouping provider with real API calls.

Reads config from .env and sends one small component batch and one small
substrate batch through the grouping client to verify credentials, routing
and response parsing.

Usage:
    uv run python scripts/smoke_test_llm.py                     # both domains
    uv run python scripts/smoke_test_llm.py --domain substrate  # one domain
"""
from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import Settings
from src.models.normalization import NormalizationDomain
from src.pipeline.errors import GroupingClientError
from src.pipeline.llm import SemanticGroupingClient
from src.pipeline.prompts import SYSTEM_PROMPTS

SAMPLE_NAMES: dict[NormalizationDomain, list[str]] = {
    NormalizationDomain.COMPONENT: ["door jamb", "dr. jamb", "clos. wall", "closet wall", "win sill"],
    NormalizationDomain.SUBSTRATE: ["wood", "wd", "drywall", "sheetrock", "mtl"],
}


def _settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


async def check_domain(client: SemanticGroupingClient, domain: NormalizationDomain) -> bool:
    names = SAMPLE_NAMES[domain]
    print(f"  {domain.value:<12s} {len(names)} names ", end="", flush=True)
    t0 = time.monotonic()
    try:
        result = await client.group(SYSTEM_PROMPTS[domain], names, noun=f"{domain.value} names")
    except GroupingClientError as exc:
        elapsed = time.monotonic() - t0
        print(f"FAIL  {elapsed:.1f}s  [{exc.kind}] {exc}")
        return False
    elapsed = time.monotonic() - t0
    print(f"OK  {elapsed:.1f}s  groups={len(result.normalizations)}")
    for group in result.normalizations:
        print(f"      {group.canonical:<24s} {group.confidence:.2f}  {', '.join(group.variants)}")
    return True


async def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke-test the AI grouping provider")
    parser.add_argument("--domain", choices=[d.value for d in NormalizationDomain], help="Test one domain only")
    args = parser.parse_args()

    settings = _settings()
    client = SemanticGroupingClient(settings)
    print(f"\n--- Provider: {client.provider} model={settings.ai_model} ---")
    if not client.is_configured():
        print("  not configured (missing API key, endpoint or deployment)")
        return 1

    domains = [NormalizationDomain(args.domain)] if args.domain else list(NormalizationDomain)
    results = [await check_domain(client, domain) for domain in domains]

    passed = sum(results)
    failed = len(results) - passed
    print(f"\n{'='*60}")
    print(f"  {passed} passed, {failed} failed, {client.request_count} requests")
    print(f"{'='*60}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
