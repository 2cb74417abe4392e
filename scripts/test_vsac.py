#!/usr/bin/env python3
"""Live smoke test for VSAC integration. Needs VSAC_USERNAME and VSAC_PASSWORD."""

import asyncio
import sys
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cql_omop.config.settings import settings
from cql_omop.services.vsac_cache import ValueSetCache
from cql_omop.services.vsac_services import VSACService
from cql_omop.utils.error_handlers import VSACError

TEST_VALUE_SETS = [
    {
        "name": "Essential Hypertension",
        "oid": "2.16.840.1.113883.3.464.1003.104.12.1011"
    },
    {
        "name": "Diabetes",
        "oid": "2.16.840.1.113883.3.464.1003.103.12.1001"
    }
]


async def test_vsac_integration():
    """Retrieve common value sets one by one, then again as a batch."""
    print("Testing VSAC Integration...\n")

    if not settings.vsac_username or not settings.vsac_password:
        print("Error: VSAC_USERNAME and VSAC_PASSWORD environment variables are required")
        return 1

    vsac_service = VSACService(cache=ValueSetCache())

    for test_case in TEST_VALUE_SETS:
        print(f"Testing: {test_case['name']} ({test_case['oid']})")

        start_time = time.time()
        try:
            value_set = await vsac_service.retrieve_value_set(
                test_case["oid"],
                username=settings.vsac_username,
                password=settings.vsac_password
            )
        except VSACError as error:
            print(f"  Error [{error.code}]: {error}")
            for hint in error.guidance:
                print(f"    - {hint}")
            continue

        duration = int((time.time() - start_time) * 1000)
        concepts = value_set.source_concepts
        print(f"  Retrieved {len(concepts)} concepts in {duration}ms (outcome: {value_set.outcome.value})")

        if concepts:
            sample = concepts[0]
            print(f"  Sample concept: {sample.code} - {sample.display_name} ({sample.code_system_name})")
            print(f"  Code systems found: {', '.join(sorted({c.code_system_name for c in concepts}))}")
        print("")

    cache_stats = vsac_service.get_cache_stats()
    print(f"Cache size: {cache_stats['size']} value sets")
    print(f"Cached keys: {', '.join(cache_stats['keys']) or 'None'}")

    print("\nTesting batch retrieval (served from cache)...")
    start_time = time.time()
    batch_results = await vsac_service.retrieve_multiple_value_sets(
        [test["oid"] for test in TEST_VALUE_SETS],
        settings.vsac_username,
        settings.vsac_password
    )
    duration = int((time.time() - start_time) * 1000)
    print(f"Batch retrieval completed in {duration}ms")

    for oid, value_set in batch_results.items():
        suffix = f" (error: {value_set.error})" if value_set.error else ""
        print(f"  {oid}: {len(value_set.source_concepts)} concepts{suffix}")

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(test_vsac_integration()))
