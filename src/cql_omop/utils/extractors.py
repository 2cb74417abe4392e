import re
import logging
from typing import List, Dict, Any

from cql_omop.models.vsac_models import ExtractionResult, OidValidationResult, ValueSetReference

logger = logging.getLogger(__name__)

# Group 2: name, Group 5: OID. Only single-quoted urn:oid references match.
VALUESET_DECLARATION_PATTERN = re.compile(
    r'(valueset\s")(.+?)(":\s\')(urn:oid:)((\d+\.)*\d+)(\')',
    re.IGNORECASE
)

VALID_OID_PATTERN = re.compile(r'^\d+(?:\.\d+)+$')

# code "8462-4": '8462-4' from "LOINC"
CODE_DECLARATION_PATTERN = re.compile(
    r'code\s+"([^"]+)":\s+\'([^\']+)\'\s+from\s+"([^"]+)"',
    re.IGNORECASE
)


def extract_valueset_identifiers_from_cql(cql_query: str) -> ExtractionResult:
    """
    Extract ValueSet OID identifiers from CQL query using valueset declaration pattern.

    Returns:
        ExtractionResult where ``oids`` holds each OID once in first-seen order
        and ``valuesets`` holds one name/oid pair per declaration
    """
    if not cql_query or not isinstance(cql_query, str):
        logger.warning(f"Invalid CQL query input: {type(cql_query)}")
        return ExtractionResult()

    oids: Dict[str, None] = {}
    valuesets = []

    for match in VALUESET_DECLARATION_PATTERN.finditer(cql_query):
        name = match.group(2).strip()
        oid = match.group(5)

        oids.setdefault(oid, None)
        valuesets.append(ValueSetReference(name=name, oid=oid))
        logger.debug(f'Found valueset declaration: "{name}" -> {oid}')

    logger.info(f"Extracted {len(oids)} unique OIDs from {len(valuesets)} valueset declarations")

    return ExtractionResult(oids=list(oids), valuesets=valuesets)


def validate_extracted_oids(oids: List[str]) -> List[str]:
    """
    Validate that extracted OIDs follow proper format.

    Args:
        oids: Array of OID strings

    Returns:
        Array of valid OIDs
    """
    return partition_oids(oids).valid


def partition_oids(oids: List[str]) -> OidValidationResult:
    """Split OIDs into those matching the dotted-numeric grammar and the rest."""
    if not oids or not isinstance(oids, (list, tuple)):
        if oids:
            logger.error(f"partition_oids: expected a list but got {type(oids)}")
        return OidValidationResult()

    valid, invalid = [], []
    for oid in oids:
        if isinstance(oid, str) and VALID_OID_PATTERN.match(oid):
            valid.append(oid)
        else:
            if not isinstance(oid, str):
                logger.warning(f"partition_oids: non-string OID found: {oid!r}")
            invalid.append(oid)

    if invalid:
        logger.warning(f"Invalid OIDs found: {invalid}")

    return OidValidationResult(valid=valid, invalid=invalid)


def map_vsac_to_omop_vocabulary(vsac_code_system_name: str) -> str:
    """
    Map VSAC code system names to OMOP vocabulary_id values.

    Unknown names pass through unchanged.
    """
    return VSAC_TO_OMOP_VOCABULARY.get(vsac_code_system_name, vsac_code_system_name)


VSAC_TO_OMOP_VOCABULARY = {
    'ICD10CM': 'ICD10CM',
    'ICD-10-CM': 'ICD10CM',
    'ICD10PCS': 'ICD10PCS',
    'SNOMEDCT_US': 'SNOMED',
    'SNOMEDCT': 'SNOMED',
    'SNOMED CT US Edition': 'SNOMED',
    'CPT': 'CPT4',
    'HCPCS': 'HCPCS',
    'LOINC': 'LOINC',
    'RxNorm': 'RxNorm',
    'RXNORM': 'RxNorm',
    'ICD9CM': 'ICD9CM',
    'ICD-9-CM': 'ICD9CM',
    'NDC': 'NDC',
    'CVX': 'CVX'
}


def extract_individual_codes_from_cql(cql_query: str) -> Dict[str, Any]:
    """
    Extract individual LOINC/SNOMED codes from CQL query.

    Returns:
        Dict with codes array and count
    """
    codes = []
    if not cql_query or not isinstance(cql_query, str):
        return {"codes": codes, "count": 0}

    for match in CODE_DECLARATION_PATTERN.finditer(cql_query):
        name, code, system = match.group(1), match.group(2), match.group(3)
        codes.append({
            "name": name,
            "code": code,
            "system": system
        })
        logger.debug(f'Found individual code: {name} ({code}) from {system}')

    return {
        "codes": codes,
        "count": len(codes)
    }
