"""
LLM-backed CQL to OMOP SQL generation plus the mapping summary it consumes.
"""

import json
import logging
from collections import Counter
from typing import Dict, Any, List, Optional

from cql_omop.models.omop_models import MappingResults
from cql_omop.services.json_utils import strip_code_fences
from cql_omop.services.llm_services import LLMService, get_llm_service

logger = logging.getLogger(__name__)

SQL_TRANSLATION_PROMPT = """You are an expert in translating CQL (Clinical Quality Language) to OMOP CDM SQL queries.

Generate a {dialect}-compatible SQL query using the provided OMOP concept mappings.

Key OMOP CDM tables and their purposes:
- person: Demographics (person_id, gender_concept_id, year_of_birth, race_concept_id, ethnicity_concept_id)
- condition_occurrence: Diagnoses (condition_concept_id, person_id, condition_start_date, visit_occurrence_id)
- drug_exposure: Medications (drug_concept_id, person_id, drug_exposure_start_date, visit_occurrence_id)
- procedure_occurrence: Procedures (procedure_concept_id, person_id, procedure_date, visit_occurrence_id)
- measurement: Lab results (measurement_concept_id, person_id, measurement_date, value_as_number)
- observation: Other clinical facts (observation_concept_id, person_id, observation_date, value_as_number)
- visit_occurrence: Encounters (visit_concept_id, person_id, visit_start_date, visit_end_date)

Prefer these fact tables: {fact_tables}.
Use the concept IDs provided in the mapping for WHERE clauses with IN operators.
Always include proper JOINs to person table.
Return only the SQL query, no explanations."""

BASIC_SQL_PROMPT = """Convert this CQL query to basic OMOP CDM SQL ({dialect}).
Focus on demographic filters, date ranges, and simple conditions.
Return only the SQL query."""


def summarize_omop_mapping(results: MappingResults, source_concept_counts: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    """
    Condense catalog results into what the SQL prompt needs.

    Standard and mapped targets are preferred; verbatim matches are used
    only when neither produced anything.
    """
    source_concept_counts = source_concept_counts or {}
    targets = results.standard + results.mapped or results.verbatim

    by_value_set: Dict[str, List[int]] = {}
    for concept in targets:
        ids = by_value_set.setdefault(concept.concept_set_id, [])
        if concept.concept_id not in ids:
            ids.append(concept.concept_id)

    concept_ids = list(dict.fromkeys(c.concept_id for c in targets))
    value_set_ids = list(dict.fromkeys(list(source_concept_counts) + list(by_value_set)))

    return {
        "totalValueSets": len(value_set_ids),
        "totalMappedConcepts": len(concept_ids),
        "conceptIdList": concept_ids,
        "conceptIdString": ",".join(str(cid) for cid in concept_ids),
        "domainBreakdown": dict(Counter(c.domain_id or "Unknown" for c in targets)),
        "vocabularyBreakdown": dict(Counter(c.vocabulary_id for c in targets)),
        "valueSetDetails": [
            {
                "oid": oid,
                "name": next((c.concept_set_name for c in targets if c.concept_set_id == oid), None),
                "conceptIds": by_value_set.get(oid, []),
                "conceptCount": len(by_value_set.get(oid, [])),
                "sourceConcepts": source_concept_counts.get(oid, 0)
            }
            for oid in value_set_ids
        ]
    }


def troubleshoot_sql_query(sql_query: str, mapping: Dict[str, Any]) -> Dict[str, Any]:
    """Cheap heuristic checks on generated SQL against the mapping it was built from."""
    issues = []
    recommendations = []
    lowered = (sql_query or "").lower()
    concept_ids = mapping.get("conceptIdList", [])

    if not sql_query or "not implemented" in lowered:
        issues.append("SQL generation appears incomplete")
        recommendations.append("Review CQL structure and ensure proper concept mappings")

    if "from" not in lowered:
        issues.append("No FROM clause detected in generated SQL")
        recommendations.append("Check if CQL query structure is valid")

    if mapping.get("totalMappedConcepts", 0) == 0:
        issues.append("No OMOP concepts found for any ValueSets")
        recommendations.append("Verify ValueSet OIDs are correct and VSAC credentials are valid")

    if "concept_id" in lowered and not concept_ids:
        issues.append("SQL references concept_id but no concepts were mapped")
        recommendations.append("Check OMOP vocabulary loading and concept mapping logic")

    missing = [cid for cid in concept_ids if str(cid) not in (sql_query or "")]
    if concept_ids and len(missing) == len(concept_ids):
        issues.append("None of the mapped concept IDs appear in the generated SQL")
        recommendations.append("Regenerate the SQL and check that the concept mapping reached the prompt")

    return {
        "issues": issues,
        "recommendations": recommendations or ["SQL appears well-formed"],
        "mappingStats": {
            "totalConcepts": mapping.get("totalMappedConcepts", 0),
            "totalValueSets": mapping.get("totalValueSets", 0),
            "hasConceptIds": bool(concept_ids)
        }
    }


class SQLGenerator:
    def __init__(self, llm_service: Optional[LLMService] = None, dialect: str = "postgresql"):
        self._llm_service = llm_service
        self.dialect = dialect

    @property
    def llm_service(self) -> LLMService:
        if self._llm_service is None:
            self._llm_service = get_llm_service()
        return self._llm_service

    async def translate_cql_to_sql(
        self,
        cql_query: str,
        summarized_mapping: Dict[str, Any],
        target_fact_tables: Optional[List[str]] = None
    ) -> str:
        fact_tables = ", ".join(target_fact_tables or ["condition_occurrence", "measurement"])
        messages = [
            {
                "role": "system",
                "content": SQL_TRANSLATION_PROMPT.format(dialect=self.dialect, fact_tables=fact_tables)
            },
            {
                "role": "user",
                "content": f"CQL Query:\n{cql_query}\n\nOMOP Concept Mapping:\n{json.dumps(summarized_mapping, indent=2)}"
            }
        ]

        logger.info("Generating SQL from CQL and concept mapping")
        response = await self.llm_service.create_completion(messages)
        return strip_code_fences(response["content"])

    async def generate_basic_sql(self, cql_query: str) -> str:
        """SQL for CQL without value sets: demographics and dates only."""
        messages = [
            {"role": "system", "content": BASIC_SQL_PROMPT.format(dialect=self.dialect)},
            {"role": "user", "content": cql_query}
        ]

        response = await self.llm_service.create_completion(messages)
        return strip_code_fences(response["content"])
