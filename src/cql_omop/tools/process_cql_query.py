import logging
from typing import Dict, Any, List, Optional
from cql_omop.models.omop_models import MappingResults
from cql_omop.services.database_service import ConceptCatalog, open_catalog
from cql_omop.services.llm_services import LLMError
from cql_omop.services.sql_generator import SQLGenerator, summarize_omop_mapping, troubleshoot_sql_query
from cql_omop.services.vocabulary_mapper import VocabularyMapper
from cql_omop.services.vsac_services import VSACService
from cql_omop.tools.map_vsac_to_omop import prepare_concepts_and_summary, prepare_individual_codes
from cql_omop.utils.config import load_config
from cql_omop.utils.env_helpers import (
    get_vsac_credentials,
    get_database_config,
    mask_presence,
    vsac_environment_status
)
from cql_omop.utils.extractors import (
    extract_valueset_identifiers_from_cql,
    extract_individual_codes_from_cql,
    partition_oids
)
from cql_omop.utils.helpers import timestamp

logger = logging.getLogger(__name__)


async def process_cql_query_tool(
    vsac_service: VSACService,
    catalog: Optional[ConceptCatalog],
    cql_query: str,
    vsac_username: Optional[str] = None,
    vsac_password: Optional[str] = None,
    database_password: Optional[str] = None,
    omop_database_schema: Optional[str] = None,
    target_fact_tables: Optional[List[str]] = None,
    sql_generator: Optional[SQLGenerator] = None,
    vocabulary_mapper: Optional[VocabularyMapper] = None
) -> Dict[str, Any]:
    """
    Full CQL processing pipeline ending in generated SQL.

    CQL without value sets skips VSAC and the catalog and gets the basic
    demographic SQL prompt instead.
    """
    pipeline_config = load_config()["pipeline"]
    sql_generator = sql_generator or SQLGenerator(dialect=pipeline_config["sql_dialect"])
    target_fact_tables = target_fact_tables or pipeline_config["target_fact_tables"]
    vsac_username, vsac_password = get_vsac_credentials(vsac_username, vsac_password)
    db_config = get_database_config(password=database_password, schema=omop_database_schema)

    try:
        logger.info("Starting full CQL processing pipeline...")
        extraction = extract_valueset_identifiers_from_cql(cql_query)
        valid_oids = partition_oids(extraction.oids).valid
        individual_codes = extract_individual_codes_from_cql(cql_query)["codes"]

        if not valid_oids and not individual_codes:
            return {
                "success": True,
                "step": "No ValueSets found",
                "message": "No ValueSet OIDs found in CQL query. This may be a simple query without value sets.",
                "cqlQuery": cql_query,
                "finalSql": await sql_generator.generate_basic_sql(cql_query)
            }

        if valid_oids and (not vsac_username or not vsac_password):
            return {
                "success": False,
                "error": "VSAC credentials are required",
                "errorCode": "AUTH_REQUIRED",
                "environmentVariables": vsac_environment_status()
            }

        vsac_results = await vsac_service.retrieve_multiple_value_sets(valid_oids, vsac_username, vsac_password)

        vocabulary_mapping = None
        if vocabulary_mapper is not None:
            code_systems = {c.code_system_name for vs in vsac_results.values() for c in vs.source_concepts}
            vocabulary_mapping = await vocabulary_mapper.map_code_systems(sorted(code_systems))

        concepts, value_set_summary = prepare_concepts_and_summary(vsac_results, extraction, vocabulary_mapping)
        concepts.extend(prepare_individual_codes(individual_codes)[0])

        if db_config["password"]:
            async with open_catalog(catalog, db_config, overridden=database_password is not None) as active_catalog:
                mapping_results = await active_catalog.map_concepts(concepts, db_config["schema"])
        else:
            logger.warning("No database password configured, generating SQL without OMOP concept IDs")
            mapping_results = MappingResults(errors={"database": "DATABASE_PASSWORD not set"})

        source_counts = {oid: info["conceptCount"] for oid, info in value_set_summary.items()}
        summarized_mapping = summarize_omop_mapping(mapping_results, source_counts)

        final_sql = await sql_generator.translate_cql_to_sql(cql_query, summarized_mapping, target_fact_tables)
        troubleshooting = troubleshoot_sql_query(final_sql, summarized_mapping)

        return {
            "success": True,
            "pipeline": {
                "extractedOids": extraction.oids,
                "vsacResults": [
                    {
                        "oid": oid,
                        "conceptCount": info["conceptCount"],
                        "codeSystemsFound": info["codeSystemsFound"],
                        "status": info["status"]
                    }
                    for oid, info in value_set_summary.items()
                ],
                "omopMapping": summarized_mapping,
                "mappingErrors": mapping_results.errors,
                "troubleshooting": troubleshooting
            },
            "finalSql": final_sql,
            "credentialsUsed": {"vsacUsername": mask_presence(vsac_username)},
            "metadata": {
                "totalValueSets": len(extraction.oids),
                "totalConceptsFromVsac": sum(source_counts.values()),
                "totalMappedToOmop": summarized_mapping["totalMappedConcepts"],
                "processingTime": timestamp()
            }
        }

    except LLMError as error:
        logger.error(f"SQL generation failed: {error}")
        return {
            "success": False,
            "error": str(error),
            "step": "SQL generation failed",
            "timestamp": timestamp()
        }
    except Exception as error:
        logger.error(f"Pipeline error: {error}", exc_info=True)
        return {
            "success": False,
            "error": str(error),
            "step": "Pipeline execution failed",
            "timestamp": timestamp()
        }
