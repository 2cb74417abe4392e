from pydantic import BaseModel
from typing import List, Optional, Dict


class OMOPConcept(BaseModel):
    concept_set_id: str
    concept_set_name: Optional[str] = None
    concept_id: int
    concept_code: str
    vocabulary_id: str
    domain_id: Optional[str] = None
    concept_class_id: Optional[str] = None
    concept_name: Optional[str] = None
    standard_concept: Optional[str] = None
    source_concept_id: Optional[int] = None
    relationship_id: Optional[str] = None
    source_vocabulary: Optional[str] = None
    mapping_type: str


class ConceptMapping(BaseModel):
    """One VSAC concept prepared for the catalog lookup."""
    concept_set_id: str
    concept_set_name: str
    concept_code: str
    vocabulary_id: str
    original_vocabulary: str
    display_name: str
    code_system: Optional[str] = None
    is_individual_code: bool = False


class MappingResults(BaseModel):
    verbatim: List[OMOPConcept] = []
    standard: List[OMOPConcept] = []
    mapped: List[OMOPConcept] = []
    errors: Dict[str, str] = {}

    def all_concepts(self) -> List[OMOPConcept]:
        return self.verbatim + self.standard + self.mapped
