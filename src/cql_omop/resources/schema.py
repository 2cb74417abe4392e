from typing import Dict, Any
from cql_omop.config.settings import settings

# Columns the pipeline reads or the generated SQL is expected to use
OMOP_CDM_TABLES = {
    "concept": [
        "concept_id", "concept_name", "domain_id", "vocabulary_id",
        "concept_class_id", "standard_concept", "concept_code"
    ],
    "concept_relationship": ["concept_id_1", "concept_id_2", "relationship_id"],
    "person": ["person_id", "gender_concept_id", "year_of_birth", "race_concept_id", "ethnicity_concept_id"],
    "visit_occurrence": ["visit_occurrence_id", "person_id", "visit_concept_id", "visit_start_date", "visit_end_date"],
    "condition_occurrence": ["person_id", "condition_concept_id", "condition_start_date", "visit_occurrence_id"],
    "procedure_occurrence": ["person_id", "procedure_concept_id", "procedure_date", "visit_occurrence_id"],
    "measurement": ["person_id", "measurement_concept_id", "measurement_date", "value_as_number"],
    "drug_exposure": ["person_id", "drug_concept_id", "drug_exposure_start_date", "visit_occurrence_id"],
    "observation": ["person_id", "observation_concept_id", "observation_date", "value_as_number"]
}


async def omop_schema_resource() -> Dict[str, Any]:
    """Get OMOP schema information."""
    return {
        "version": "5.4",
        "schema": settings.omop_database_schema,
        "tables": OMOP_CDM_TABLES,
        "vocabulary_tables": ["concept", "concept_relationship"],
        "mapping_relationship": "Maps to"
    }
