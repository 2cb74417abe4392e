from enum import Enum
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List, Optional, Any


class VSACModel(BaseModel):
    """Base for VSAC models: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True
    )


class ValueSetOutcome(str, Enum):
    """How a single value set retrieval ended."""
    CONCEPTS = "concepts"
    EMPTY_VALUESET = "empty_valueset"
    PARSE_ERROR = "parse_error"
    NO_VALUESET = "no_valueset"
    FETCH_ERROR = "fetch_error"


# Diagnostic concept codes used by the normalizer
EMPTY_VALUESET = "EMPTY_VALUESET"
PARSE_ERROR = "PARSE_ERROR"
NO_VALUESET = "NO_VALUESET"


class VSACConcept(VSACModel):
    code: str
    code_system: str
    code_system_name: str
    code_system_version: Optional[str] = None
    display_name: str


class VSACMetadata(VSACModel):
    id: Optional[str] = None
    display_name: Optional[str] = None
    version: Optional[str] = None
    source: Optional[str] = None
    type: Optional[str] = None
    binding: Optional[str] = None
    status: Optional[str] = None
    revision_date: Optional[str] = None
    description: Optional[str] = None
    # Parsed out of the Purpose element
    clinical_focus: Optional[str] = None
    data_element_scope: Optional[str] = None
    inclusion_criteria: Optional[str] = None
    exclusion_criteria: Optional[str] = None


class VSACValueSet(VSACModel):
    metadata: VSACMetadata
    concepts: List[VSACConcept]
    outcome: ValueSetOutcome = ValueSetOutcome.CONCEPTS
    error: Optional[str] = None

    @property
    def source_concepts(self) -> List[VSACConcept]:
        """Real terminology concepts only; empty for every sentinel outcome."""
        if self.outcome != ValueSetOutcome.CONCEPTS:
            return []
        return list(self.concepts)

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ValueSetReference(VSACModel):
    name: str
    oid: str


class ExtractionResult(VSACModel):
    oids: List[str] = []
    valuesets: List[ValueSetReference] = []

    def find_by_oid(self, oid: str) -> Optional[ValueSetReference]:
        """First declaration carrying this OID, in source order."""
        return next((vs for vs in self.valuesets if vs.oid == oid), None)

    def name_for(self, oid: str, default: Optional[str] = None) -> Optional[str]:
        reference = self.find_by_oid(oid)
        return reference.name if reference else default


class OidValidationResult(VSACModel):
    valid: List[str] = []
    invalid: List[Any] = []
