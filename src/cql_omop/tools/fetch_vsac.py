import logging
from typing import Dict, Any, List, Optional
from cql_omop.models.vsac_models import VSACValueSet, ValueSetOutcome
from cql_omop.services.vsac_parser import parse_vsac_response
from cql_omop.services.vsac_services import VSACService
from cql_omop.utils.env_helpers import (
    get_vsac_credentials,
    validate_required_credentials,
    create_credentials_error_response,
    mask_presence,
    vsac_environment_status
)
from cql_omop.utils.error_handlers import VSACError
from cql_omop.utils.helpers import timestamp, preview

logger = logging.getLogger(__name__)


def _missing_credentials(username: Optional[str], password: Optional[str], operation: str) -> Optional[dict]:
    valid, missing = validate_required_credentials(
        {"username": username, "password": password}, ["username", "password"]
    )
    if valid:
        return None
    response = create_credentials_error_response(missing, operation)
    response["environmentVariables"] = vsac_environment_status()
    return response


def _vsac_error_response(error: VSACError, **context) -> Dict[str, Any]:
    return {
        "success": False,
        **error.to_dict(),
        **context,
        "timestamp": timestamp()
    }


def _status_of(value_set: VSACValueSet) -> str:
    if value_set.outcome == ValueSetOutcome.CONCEPTS:
        return "success" if value_set.concepts else "empty"
    if value_set.outcome == ValueSetOutcome.FETCH_ERROR:
        return "error"
    return value_set.outcome.value


async def fetch_multiple_vsac_tool(
    vsac_service: VSACService,
    value_set_ids: List[str],
    username: Optional[str] = None,
    password: Optional[str] = None
) -> Dict[str, Any]:
    """
    Fetch multiple ValueSets from VSAC.

    Args:
        vsac_service: Retrieval client owning the shared cache
        value_set_ids: List of ValueSet OIDs to fetch
        username: VSAC username (optional, uses env var if not provided)
        password: VSAC password (optional, uses env var if not provided)

    Returns:
        Dict with per-OID results (camelCase) and summary counts
    """
    username, password = get_vsac_credentials(username, password)
    missing = _missing_credentials(username, password, "VSAC value set fetching")
    if missing:
        missing["valueSetIds"] = value_set_ids
        return missing

    logger.info(f"Batch fetching {len(value_set_ids)} VSAC value sets")

    results = await vsac_service.retrieve_multiple_value_sets(value_set_ids, username, password)

    processed_results = {oid: value_set.to_response() for oid, value_set in results.items()}

    successful = [vs for vs in results.values() if vs.source_concepts]
    failed = [oid for oid, vs in results.items() if vs.outcome == ValueSetOutcome.FETCH_ERROR]

    return {
        "success": True,
        "totalRequested": len(results),
        "successfulRetrievals": len(successful),
        "failedRetrievals": len(failed),
        "failedValueSetIds": failed,
        "totalConcepts": sum(len(vs.source_concepts) for vs in results.values()),
        "statusByValueSet": {oid: _status_of(vs) for oid, vs in results.items()},
        "results": processed_results,
        "credentialsUsed": {
            "username": mask_presence(username),
            "password": mask_presence(password)
        },
        "retrievedAt": timestamp()
    }


async def fetch_vsac_tool(
    vsac_service: VSACService,
    value_set_id: str,
    version: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None
) -> Dict[str, Any]:
    """Fetch a single ValueSet; VSAC failures come back with code and guidance."""
    username, password = get_vsac_credentials(username, password)
    missing = _missing_credentials(username, password, "VSAC value set fetching")
    if missing:
        missing["valueSetId"] = value_set_id
        return missing

    try:
        value_set = await vsac_service.retrieve_value_set(value_set_id, version, username, password)
    except VSACError as error:
        logger.error(f"Error fetching {value_set_id}: {error}")
        return _vsac_error_response(error, valueSetId=value_set_id, version=version)

    return {
        "success": True,
        "valueSetId": value_set_id,
        "version": version or "latest",
        "status": _status_of(value_set),
        "conceptCount": len(value_set.source_concepts),
        "codeSystemsFound": sorted({c.code_system_name for c in value_set.source_concepts}),
        **value_set.to_response(),
        "retrievedAt": timestamp()
    }


async def inspect_vsac_xml_tool(
    vsac_service: VSACService,
    value_set_id: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    preview_length: int = 2000
) -> Dict[str, Any]:
    """Debug aid: the raw SVS payload next to its normalized form. Bypasses the cache."""
    username, password = get_vsac_credentials(username, password)
    missing = _missing_credentials(username, password, "VSAC XML inspection")
    if missing:
        return missing

    try:
        raw_xml = await vsac_service.fetch_raw_xml(value_set_id, None, username, password)
    except VSACError as error:
        return _vsac_error_response(error, valueSetId=value_set_id)

    normalized = parse_vsac_response(raw_xml)

    return {
        "success": True,
        "valueSetId": value_set_id,
        "rawLength": len(raw_xml),
        "rawPreview": preview(raw_xml, preview_length),
        "namespaceQualified": "urn:ihe:iti:svs:2008" in raw_xml,
        "outcome": normalized.outcome.value,
        "normalized": normalized.to_response()
    }


async def vsac_cache_status_tool(vsac_service: VSACService) -> Dict[str, Any]:
    """
    Get VSAC cache status.

    Returns:
        Dict with cache information and environment variables
    """
    stats = vsac_service.get_cache_stats()

    return {
        "cacheSize": stats["size"],
        "cachedValueSets": stats["keys"],
        "environmentVariables": vsac_environment_status(),
        "status": "cache_info"
    }


async def clear_vsac_cache_tool(vsac_service: VSACService) -> Dict[str, Any]:
    cleared = vsac_service.clear_cache()
    return {
        "success": True,
        "clearedEntries": cleared,
        "cacheSize": 0,
        "clearedAt": timestamp()
    }
