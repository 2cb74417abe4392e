"""
Pluggable OID extraction strategies.

``RegexOidExtractor`` is the default and is deterministic. ``LLMOidExtractor``
asks the configured LLM for the OIDs and is kept for comparison runs.
"""

import re
import logging
from typing import Callable, Dict, Optional

from cql_omop.models.vsac_models import ExtractionResult
from cql_omop.services.json_utils import parse_llm_json
from cql_omop.services.llm_services import LLMService, LLMError, get_llm_service
from cql_omop.utils.extractors import extract_valueset_identifiers_from_cql

logger = logging.getLogger(__name__)

# HL7 OID arc used by VSAC value sets
HL7_OID_PATTERN = re.compile(r'2\.16\.840\.1\.113883\.\d+(?:\.\d+)*')

LLM_EXTRACTION_PROMPT = (
    "Extract all ValueSet OID identifiers from the CQL query and return them "
    "as a JSON array of strings. Only return the JSON array, no other text."
)


class OidExtractor:
    """Base strategy: turn CQL text into an ExtractionResult."""

    name = "base"

    async def extract(self, cql_query: str) -> ExtractionResult:
        raise NotImplementedError


class RegexOidExtractor(OidExtractor):
    name = "regex"

    async def extract(self, cql_query: str) -> ExtractionResult:
        return extract_valueset_identifiers_from_cql(cql_query)


class LLMOidExtractor(OidExtractor):
    name = "llm"

    def __init__(self, llm_service: Optional[LLMService] = None):
        self._llm_service = llm_service

    @property
    def llm_service(self) -> LLMService:
        if self._llm_service is None:
            self._llm_service = get_llm_service()
        return self._llm_service

    async def extract(self, cql_query: str) -> ExtractionResult:
        if not cql_query or not isinstance(cql_query, str):
            return ExtractionResult()

        messages = [
            {"role": "system", "content": LLM_EXTRACTION_PROMPT},
            {"role": "user", "content": f"CQL Query:\n{cql_query}\n"}
        ]

        try:
            response = await self.llm_service.create_completion(messages, temperature=0)
        except LLMError as error:
            logger.error(f"LLM OID extraction failed, falling back to pattern scan: {error}")
            oids = self._scan_for_oids(cql_query)
        else:
            parsed = parse_llm_json(response.get("content", ""))
            if isinstance(parsed, dict):
                parsed = parsed.get("oids")
            if isinstance(parsed, list):
                oids = [str(oid).replace("urn:oid:", "") for oid in parsed if oid]
            else:
                logger.warning("LLM reply was not a JSON array, falling back to pattern scan")
                oids = self._scan_for_oids(cql_query)

        oids = list(dict.fromkeys(oids))

        # Names come from the declarations whenever the declaration parses
        declared = extract_valueset_identifiers_from_cql(cql_query)
        valuesets = [vs for vs in declared.valuesets if vs.oid in oids]

        logger.info(f"LLM extraction found {len(oids)} OIDs")
        return ExtractionResult(oids=oids, valuesets=valuesets)

    @staticmethod
    def _scan_for_oids(cql_query: str):
        return HL7_OID_PATTERN.findall(cql_query)


OID_EXTRACTORS: Dict[str, Callable[[], OidExtractor]] = {
    RegexOidExtractor.name: RegexOidExtractor,
    LLMOidExtractor.name: LLMOidExtractor
}


def get_oid_extractor(method: str = "regex") -> OidExtractor:
    """Look up an extraction strategy by name ("regex" or "llm")."""
    key = (method or "regex").lower()
    if key not in OID_EXTRACTORS:
        raise ValueError(f"Unknown extraction method '{method}'. Use one of: {', '.join(OID_EXTRACTORS)}")
    return OID_EXTRACTORS[key]()
