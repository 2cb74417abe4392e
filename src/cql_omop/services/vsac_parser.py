"""
Normalizes VSAC SVS ``RetrieveMultipleValueSets`` XML into a ``VSACValueSet``.

VSAC has served the same document both with namespace-qualified element
names (``ns0:DescribedValueSet`` bound to the SVS namespace) and with bare
names. A prefix bound to another URI is read the same way. Every lookup below
goes through ``_find``/``_findall``, which probe the SVS-qualified name, then
the name in any namespace, then the bare name.
"""

import re
import logging
from typing import Dict, List, Optional

from lxml import etree

from cql_omop.models.vsac_models import (
    VSACValueSet, VSACConcept, VSACMetadata, ValueSetOutcome,
    EMPTY_VALUESET, PARSE_ERROR, NO_VALUESET
)

logger = logging.getLogger(__name__)

SVS_NAMESPACE = "urn:ihe:iti:svs:2008"

RESPONSE_ELEMENT = "RetrieveMultipleValueSetsResponse"
VALUESET_ELEMENTS = ("DescribedValueSet", "ValueSet")

METADATA_ELEMENTS = {
    "Source": "source",
    "Type": "type",
    "Binding": "binding",
    "Status": "status",
    "RevisionDate": "revision_date",
    "Description": "description"
}

_XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)

PURPOSE_PATTERNS = {
    "clinical_focus": re.compile(r'\(Clinical Focus:\s*([^)]+)\)', re.IGNORECASE),
    "data_element_scope": re.compile(r'\(Data Element Scope:\s*([^)]+)\)', re.IGNORECASE),
    "inclusion_criteria": re.compile(r'\(Inclusion Criteria:\s*([^)]+)\)', re.IGNORECASE),
    "exclusion_criteria": re.compile(r'\(Exclusion Criteria:\s*([^)]+)\)', re.IGNORECASE)
}


def _tag_variants(name: str):
    return (f"{{{SVS_NAMESPACE}}}{name}", f"{{*}}{name}", name)


def _matches(element, name: str) -> bool:
    return etree.QName(element).localname == name


def _find(node, name: str):
    """First descendant named ``name`` in either shape, or None."""
    for tag in _tag_variants(name):
        found = node.find(f".//{tag}")
        if found is not None:
            return found
    return None


def _findall(node, name: str) -> list:
    """All descendants named ``name`` in whichever shape is present."""
    for tag in _tag_variants(name):
        found = node.findall(f".//{tag}")
        if found:
            return found
    return []


def _text(node, name: str) -> Optional[str]:
    element = _find(node, name)
    if element is None or not element.text:
        return None
    return element.text.strip() or None


def parse_purpose_field(purpose_text: Optional[str]) -> Dict[str, Optional[str]]:
    """Pull the four labelled clinical segments out of a Purpose string."""
    metadata = {key: None for key in PURPOSE_PATTERNS}
    if not purpose_text:
        return metadata

    for key, pattern in PURPOSE_PATTERNS.items():
        match = pattern.search(purpose_text)
        if match:
            metadata[key] = match.group(1).strip()

    return metadata


def _sentinel(code: str, display_name: str, code_system_name: str = "VSAC") -> VSACConcept:
    return VSACConcept(
        code=code,
        code_system="N/A",
        code_system_name=code_system_name,
        display_name=display_name
    )


def parse_error_result(error: Exception) -> VSACValueSet:
    message = f"XML parsing failed: {error}"
    return VSACValueSet(
        metadata=VSACMetadata(
            display_name="Parse Error",
            status="ERROR",
            description=message
        ),
        concepts=[_sentinel(PARSE_ERROR, message, code_system_name="VSAC_PARSER")],
        outcome=ValueSetOutcome.PARSE_ERROR
    )


def _locate_response(root):
    if _matches(root, RESPONSE_ELEMENT):
        return root
    return _find(root, RESPONSE_ELEMENT)


def _locate_value_sets(response) -> list:
    for name in VALUESET_ELEMENTS:
        value_sets = _findall(response, name)
        if value_sets:
            return value_sets
    return []


def _parse_metadata(value_set) -> VSACMetadata:
    fields = {
        "id": value_set.get("ID"),
        "display_name": value_set.get("displayName"),
        "version": value_set.get("version")
    }
    for element_name, field in METADATA_ELEMENTS.items():
        fields[field] = _text(value_set, element_name)

    fields.update(parse_purpose_field(_text(value_set, "Purpose")))
    return VSACMetadata(**fields)


def _parse_concepts(concept_list) -> List[VSACConcept]:
    concepts = []
    for node in _findall(concept_list, "Concept"):
        code = node.get("code")
        code_system = node.get("codeSystem")
        code_system_name = node.get("codeSystemName")
        display_name = node.get("displayName")

        if not (code and code_system and code_system_name and display_name):
            logger.debug(f"Skipping incomplete concept: code={code}, codeSystem={code_system}")
            continue

        concepts.append(VSACConcept(
            code=code,
            code_system=code_system,
            code_system_name=code_system_name,
            code_system_version=node.get("codeSystemVersion"),
            display_name=display_name
        ))
    return concepts


def parse_vsac_response(response_xml: str) -> VSACValueSet:
    """
    Normalize a VSAC XML payload. Never raises: malformed payloads come back
    as PARSE_ERROR results, payloads without a value set as NO_VALUESET and
    value sets without a concept list as EMPTY_VALUESET.
    """
    try:
        if isinstance(response_xml, bytes):
            payload = response_xml
        else:
            payload = response_xml.encode("utf-8")

        stripped = payload.lstrip()[:15].lower()
        if stripped.startswith(b"<!doctype html") or stripped.startswith(b"<html"):
            raise ValueError("VSAC returned HTML instead of XML - authentication or service error")

        root = etree.fromstring(payload, _XML_PARSER)

        response = _locate_response(root)
        value_sets = _locate_value_sets(response) if response is not None else []

        if not value_sets:
            logger.warning("No DescribedValueSet or ValueSet elements found")
            return VSACValueSet(
                metadata=VSACMetadata(),
                concepts=[_sentinel(NO_VALUESET, "No ValueSet found in response")],
                outcome=ValueSetOutcome.NO_VALUESET
            )

        if len(value_sets) > 1:
            logger.debug(f"Payload carries {len(value_sets)} value sets, normalizing the first")

        value_set = value_sets[0]
        metadata = _parse_metadata(value_set)

        concept_list = _find(value_set, "ConceptList")
        if concept_list is None:
            logger.info(f"ValueSet {metadata.id} has no ConceptList (may be retired)")
            return VSACValueSet(
                metadata=metadata,
                concepts=[_sentinel(
                    EMPTY_VALUESET,
                    "ValueSet exists but contains no concepts (may be retired)"
                )],
                outcome=ValueSetOutcome.EMPTY_VALUESET
            )

        concepts = _parse_concepts(concept_list)
        logger.info(f"Parsed {len(concepts)} concepts for ValueSet {metadata.id}")

        return VSACValueSet(metadata=metadata, concepts=concepts)

    except Exception as error:
        logger.error(f"Error parsing VSAC XML response: {error}")
        return parse_error_result(error)
