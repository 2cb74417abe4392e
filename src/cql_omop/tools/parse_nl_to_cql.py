import logging
from typing import Dict, Any, Optional
from cql_omop.services.json_utils import strip_code_fences
from cql_omop.services.llm_services import LLMService, LLMError, get_llm_service
from cql_omop.services.oid_extraction import get_oid_extractor
from cql_omop.utils.extractors import (
    VALUESET_DECLARATION_PATTERN,
    extract_valueset_identifiers_from_cql,
    partition_oids
)
from cql_omop.utils.config import load_config
from cql_omop.utils.helpers import format_list_with_double_quotes

logger = logging.getLogger(__name__)

NL_TO_CQL_PROMPT = (
    "You are a medical query parser. Convert the natural language medical query to a valid "
    "CQL (Clinical Quality Language) query. Declare every value set as "
    "valueset \"Name\": 'urn:oid:<OID>'. Return only the CQL code without any explanation."
)


async def parse_to_cql(query: str, llm_service: Optional[LLMService] = None) -> str:
    """Convert natural language query to CQL using LLM service."""
    llm_service = llm_service or get_llm_service()
    messages = [
        {"role": "system", "content": NL_TO_CQL_PROMPT},
        {"role": "user", "content": query}
    ]

    response = await llm_service.create_completion(messages)
    return strip_code_fences(response["content"])


async def parse_nl_to_cql_tool(
    query: str,
    include_input: bool = False,
    llm_service: Optional[LLMService] = None
) -> Dict[str, Any]:
    """
    Parse natural language to CQL and extract ValueSet references.

    Args:
        query: Natural language query to convert
        include_input: Whether to include input in response

    Returns:
        Dict containing CQL, ValueSet references, and validation info
    """
    try:
        logger.info("Converting natural language to CQL...")
        cql = await parse_to_cql(query, llm_service)
    except (LLMError, ValueError) as error:
        logger.error(f"Error parsing to CQL: {error}")
        return {
            "success": False,
            "error": f"Failed to parse natural language to CQL: {error}",
            "input": query if include_input else None
        }

    extraction = extract_valueset_identifiers_from_cql(cql)
    validation = partition_oids(extraction.oids)

    result = {
        "success": True,
        "cql": cql,
        "value_set_references": extraction.oids,
        "valuesets": [vs.model_dump() for vs in extraction.valuesets],
        "extraction_method": "valueset_declaration_regex",
        "validation": {
            "valid_oids": validation.valid,
            "invalid_oids": validation.invalid,
            "warnings": [] if extraction.oids else ["Generated CQL declares no value sets"],
            "total_found": len(extraction.oids),
            "valid_count": len(validation.valid)
        }
    }

    if include_input:
        result["input"] = query

    return result


async def extract_valuesets_tool(
    cql_query: str,
    include_input: bool = False,
    method: Optional[str] = None
) -> Dict[str, Any]:
    """
    Extract ValueSets from CQL with minimal output.

    Args:
        cql_query: CQL query to extract from
        include_input: Whether to include input in response
        method: "regex" or "llm"; defaults to the configured extraction_method
    """
    try:
        extractor = get_oid_extractor(method or load_config()["pipeline"]["extraction_method"])
    except ValueError as error:
        return {"success": False, "error": str(error)}

    extraction = await extractor.extract(cql_query)

    result = {
        "valuesets": [vs.model_dump() for vs in extraction.valuesets],
        "oids": extraction.oids,
        "count": len(extraction.oids),
        "method": extractor.name
    }

    if include_input:
        result["input"] = cql_query

    return result


async def valueset_regex_extraction_tool(
    cql_query: str,
    show_details: bool = False,
    include_input: bool = False
) -> Dict[str, Any]:
    """
    Test regex extraction patterns on CQL.

    Args:
        cql_query: CQL query to test
        show_details: Whether to show per-match details
        include_input: Whether to include input in response
    """
    logger.info("Testing regex extraction patterns...")

    extraction = extract_valueset_identifiers_from_cql(cql_query)
    validation = partition_oids(extraction.oids)

    result = {
        "extracted_value_sets": [vs.model_dump() for vs in extraction.valuesets],
        "valid_oids": validation.valid,
        "invalid_oids": validation.invalid,
        "summary": {
            "total_found": len(extraction.oids),
            "total_declarations": len(extraction.valuesets),
            "valid_oids": len(validation.valid),
            "invalid_oids": len(validation.invalid)
        },
        "copy_pastable_arrays": {
            "extracted_oids": extraction.oids,
            "valid_oids": validation.valid,
            "invalid_oids": validation.invalid,
            "extracted_oids_formatted": format_list_with_double_quotes(extraction.oids)
        }
    }

    if include_input:
        result["input"] = cql_query

    if show_details and isinstance(cql_query, str):
        matches = [
            {
                "full_match": match.group(0),
                "extracted_name": match.group(2).strip(),
                "extracted_oid": match.group(5),
                "index": match.start()
            }
            for match in VALUESET_DECLARATION_PATTERN.finditer(cql_query)
        ]

        result["detailed_regex_tests"] = {
            "valueset_pattern": {
                "pattern": VALUESET_DECLARATION_PATTERN.pattern,
                "description": "Matches valueset declarations and extracts both name and OID",
                "matches": matches
            }
        }

    return result
