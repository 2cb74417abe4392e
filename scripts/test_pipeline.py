#!/usr/bin/env python3
"""
Run the complete CQL to SQL pipeline against live VSAC, database and LLM.
"""

import asyncio
import json
import sys
from pathlib import Path

# Add src to path - scripts and src are siblings
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from cql_omop.services.database_service import ConceptCatalog
from cql_omop.services.vsac_cache import ValueSetCache
from cql_omop.services.vsac_services import VSACService
from cql_omop.tools.process_cql_query import process_cql_query_tool


TEST_CQL = """
library TestMeasure version '1.0.0'

using QDM version '5.6'

valueset "Diabetes": 'urn:oid:2.16.840.1.113883.3.464.1003.103.12.1001'
valueset "Office Visit": 'urn:oid:2.16.840.1.113883.3.464.1003.101.12.1001'

context Patient

define "Initial Population":
  exists ["Encounter, Performed": "Office Visit"]

define "Has Diabetes":
  exists ["Diagnosis": "Diabetes"]
"""


async def test_pipeline():
    print("=" * 80)
    print("Testing Complete CQL to SQL Pipeline")
    print("=" * 80)

    catalog = ConceptCatalog()
    try:
        result = await process_cql_query_tool(
            VSACService(cache=ValueSetCache()),
            catalog,
            TEST_CQL
        )
    finally:
        await catalog.close_pool()

    if result.get("success"):
        print("Pipeline succeeded!\n")
        print(result["finalSql"])
        print("\nTroubleshooting:")
        print(json.dumps(result.get("pipeline", {}).get("troubleshooting", {}), indent=2))
    else:
        print("Pipeline failed!")
        print(json.dumps(result, indent=2))

    return result


if __name__ == "__main__":
    result = asyncio.run(test_pipeline())
    sys.exit(0 if result.get("success") else 1)
