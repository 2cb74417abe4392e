import logging
from typing import Dict, Any, List, Optional, Tuple
from cql_omop.models.omop_models import ConceptMapping, MappingResults
from cql_omop.models.vsac_models import ExtractionResult, VSACValueSet, ValueSetOutcome
from cql_omop.services.database_service import ConceptCatalog, QUERIES, open_catalog
from cql_omop.services.vocabulary_mapper import VocabularyMapper
from cql_omop.services.vsac_services import VSACService
from cql_omop.utils.config import load_config
from cql_omop.utils.env_helpers import (
    get_vsac_credentials,
    get_database_config,
    describe_database,
    mask_presence,
    vsac_environment_status,
    env_status
)
from cql_omop.utils.extractors import (
    extract_valueset_identifiers_from_cql,
    extract_individual_codes_from_cql,
    map_vsac_to_omop_vocabulary,
    partition_oids
)
from cql_omop.utils.helpers import format_list_with_double_quotes, timestamp
from cql_omop.config.settings import settings

logger = logging.getLogger(__name__)

MAPPING_MODES = ("verbatim", "standard", "mapped")


def _percentage(count: int, total: int) -> str:
    return f"{(count / total * 100):.1f}" if total > 0 else "0.0"


def prepare_concepts_and_summary(
    vsac_results: Dict[str, VSACValueSet],
    extraction: ExtractionResult,
    vocabulary_mapping: Optional[Dict[str, str]] = None
) -> Tuple[List[ConceptMapping], Dict[str, Dict[str, Any]]]:
    """
    Build the flattened concept list for OMOP mapping and a per-ValueSet summary.

    Sentinel and failed results contribute no concepts; their summary entry
    carries the outcome instead.
    """
    vocabulary_mapping = vocabulary_mapping or {}
    concepts_for_mapping = []
    value_set_summary = {}

    for oid, vsac_set in vsac_results.items():
        concepts = vsac_set.source_concepts
        metadata = vsac_set.metadata
        value_set_name = extraction.name_for(oid, default=metadata.display_name or f"Unknown_{oid}")

        entry = {
            "name": value_set_name,
            "conceptCount": len(concepts),
            "codeSystemsFound": sorted({c.code_system_name for c in concepts}),
            "status": "success" if concepts else "empty",
            "outcome": vsac_set.outcome.value,
            "description": metadata.description,
            "dataElementScope": metadata.data_element_scope,
            "clinicalFocus": metadata.clinical_focus,
            "inclusionCriteria": metadata.inclusion_criteria,
            "exclusionCriteria": metadata.exclusion_criteria
        }
        if vsac_set.outcome == ValueSetOutcome.FETCH_ERROR:
            entry["status"] = "error"
            entry["error"] = vsac_set.error
        value_set_summary[oid] = entry

        for concept in concepts:
            concepts_for_mapping.append(ConceptMapping(
                concept_set_id=oid,
                concept_set_name=value_set_name,
                concept_code=concept.code,
                vocabulary_id=vocabulary_mapping.get(
                    concept.code_system_name,
                    map_vsac_to_omop_vocabulary(concept.code_system_name)
                ),
                original_vocabulary=concept.code_system_name,
                display_name=concept.display_name,
                code_system=concept.code_system
            ))

    return concepts_for_mapping, value_set_summary


def prepare_individual_codes(codes: List[Dict[str, str]]) -> Tuple[List[ConceptMapping], List[Dict[str, str]]]:
    """Concepts for directly declared codes, each under a placeholder concept set id."""
    concepts = []
    placeholders = []

    for code in codes:
        clean_code = code['code'].replace('-', '_').replace('.', '_')
        placeholder_name = f"PLACEHOLDER_{code['system'].upper()}_{clean_code}"

        concepts.append(ConceptMapping(
            concept_set_id=placeholder_name,
            concept_set_name=code['name'],
            concept_code=code['code'],
            vocabulary_id=map_vsac_to_omop_vocabulary(code['system']),
            original_vocabulary=code['system'],
            display_name=code['name'],
            code_system=code['system'],
            is_individual_code=True
        ))
        placeholders.append({
            "code": code['code'],
            "name": code['name'],
            "system": code['system'],
            "placeholder": placeholder_name
        })

    return concepts, placeholders


def summarise_vsac_fetch(vsac_results: Dict[str, VSACValueSet]) -> Dict[str, Any]:
    """Build a concise diagnostic object for the VSAC-fetch step."""
    summary = {
        "totalRequested": len(vsac_results),
        "successfulRetrievals": 0,
        "failedRetrievals": 0,
        "totalConceptsRetrieved": 0,
        "detailedSummary": [],
        "retrievedAt": timestamp()
    }

    for oid, vsac_set in vsac_results.items():
        concepts = vsac_set.source_concepts

        if concepts:
            summary["successfulRetrievals"] += 1
        if vsac_set.outcome == ValueSetOutcome.FETCH_ERROR:
            summary["failedRetrievals"] += 1
        summary["totalConceptsRetrieved"] += len(concepts)

        summary["detailedSummary"].append({
            "oid": oid,
            "conceptCount": len(concepts),
            "codeSystemsFound": sorted({c.code_system_name for c in concepts}),
            "status": "success" if concepts else "empty",
            "outcome": vsac_set.outcome.value,
            "error": vsac_set.error,
            "metadata": vsac_set.metadata.model_dump(mode="json", by_alias=True),
            "sampleConcepts": [
                {
                    "code": c.code,
                    "displayName": c.display_name,
                    "codeSystemName": c.code_system_name
                }
                for c in concepts[:3]
            ]
        })

    return summary


def group_concepts_by_value_set(concepts: List[ConceptMapping]) -> Dict[str, List[Dict[str, Any]]]:
    """Group concepts by ValueSet ID for easier processing."""
    result: Dict[str, List[Dict[str, Any]]] = {}
    for concept in concepts:
        result.setdefault(concept.concept_set_id, []).append(concept.model_dump())
    return result


def generate_omop_mapping_summary(results: MappingResults, concepts: List[ConceptMapping]) -> Dict[str, Any]:
    """Generate mapping summary statistics."""
    total_source_concepts = len(concepts)
    counts = {mode: len(getattr(results, mode)) for mode in MAPPING_MODES}

    all_concept_ids = {c.concept_id for c in results.all_concepts()}

    by_value_set: Dict[str, Dict[str, Any]] = {}
    for concept in results.all_concepts():
        stats = by_value_set.setdefault(concept.concept_set_id, {
            "verbatim": 0,
            "standard": 0,
            "mapped": 0,
            "uniqueConceptIds": set()
        })
        stats[concept.mapping_type] += 1
        stats["uniqueConceptIds"].add(concept.concept_id)

    return {
        "totalSourceConcepts": total_source_concepts,
        "totalMappings": sum(counts.values()),
        "uniqueTargetConcepts": len(all_concept_ids),
        "mappingCounts": counts,
        "mappingPercentages": {mode: _percentage(count, total_source_concepts) for mode, count in counts.items()},
        "mappingsByValueSet": [
            {
                "concept_set_id": value_set_id,
                "verbatim_mappings": stats["verbatim"],
                "standard_mappings": stats["standard"],
                "mapped_mappings": stats["mapped"],
                "unique_concept_ids": sorted(stats["uniqueConceptIds"]),
                "total_mappings": stats["verbatim"] + stats["standard"] + stats["mapped"]
            }
            for value_set_id, stats in by_value_set.items()
        ],
        "errors": results.errors
    }


def generate_mapping_summary(
    extraction: ExtractionResult,
    value_set_summary: Dict[str, Dict[str, Any]],
    concepts_for_mapping: List[ConceptMapping],
    omop_mapping_results: MappingResults
) -> Dict[str, Any]:
    """Pipeline-level summary: extraction, VSAC and catalog counts side by side."""
    total_concepts = len(concepts_for_mapping)
    counts = {mode: len(getattr(omop_mapping_results, mode)) for mode in MAPPING_MODES}

    vocabulary_distribution: Dict[str, int] = {}
    for concept in concepts_for_mapping:
        vocabulary_distribution[concept.vocabulary_id] = vocabulary_distribution.get(concept.vocabulary_id, 0) + 1

    return {
        "pipeline_success": not omop_mapping_results.errors,
        "total_valuesets_extracted": len(extraction.oids),
        "total_concepts_from_vsac": total_concepts,
        "total_omop_mappings": counts,
        "valueset_breakdown": [
            {
                "oid": oid,
                "name": info.get("name", f"Unknown_{oid}"),
                "concept_count": info.get("conceptCount", 0),
                "code_systems": info.get("codeSystemsFound", []),
                "status": info.get("status", "unknown")
            }
            for oid, info in value_set_summary.items()
        ],
        "vocabulary_distribution": vocabulary_distribution,
        "mapping_coverage": {
            f"{mode}_percentage": _percentage(count, total_concepts) for mode, count in counts.items()
        }
    }


def mapping_sql(schema: str) -> Dict[str, str]:
    """The catalog queries as they run against ``schema``, for display."""
    return {mode: query.format(schema=schema).strip() for mode, query in QUERIES.items()}


def _database_overridden(*values) -> bool:
    return any(value is not None for value in values)


async def map_vsac_to_omop_tool(
    vsac_service: VSACService,
    catalog: Optional[ConceptCatalog],
    cql_query: str,
    vsac_username: Optional[str] = None,
    vsac_password: Optional[str] = None,
    database_user: Optional[str] = None,
    database_endpoint: Optional[str] = None,
    database_name: Optional[str] = None,
    database_password: Optional[str] = None,
    omop_database_schema: Optional[str] = None,
    include_verbatim: bool = True,
    include_standard: bool = True,
    include_mapped: bool = True,
    target_fact_tables: Optional[List[str]] = None,
    vocabulary_mapper: Optional[VocabularyMapper] = None
) -> Dict[str, Any]:
    """Complete VSAC to OMOP mapping pipeline: extract, fetch, map vocabularies, query the catalog."""
    vsac_username, vsac_password = get_vsac_credentials(vsac_username, vsac_password)
    db_config = get_database_config(
        database_user, database_endpoint, database_name, database_password, omop_database_schema
    )
    target_fact_tables = target_fact_tables or load_config()["pipeline"]["target_fact_tables"]

    if not vsac_username or not vsac_password:
        return {
            "success": False,
            "error": "VSAC credentials are required",
            "errorCode": "AUTH_REQUIRED",
            "message": "Set VSAC_USERNAME and VSAC_PASSWORD environment variables, or pass them as parameters",
            "environmentVariables": vsac_environment_status()
        }

    if not db_config["password"]:
        return {
            "success": False,
            "error": "Database password is required",
            "message": "Set DATABASE_PASSWORD environment variable, or pass it as a parameter",
            "environmentVariables": {"DATABASE_PASSWORD": env_status(settings.database_password)}
        }

    try:
        logger.info("Step 1: Extracting ValueSet OIDs from CQL...")
        extraction = extract_valueset_identifiers_from_cql(cql_query)
        individual_codes = extract_individual_codes_from_cql(cql_query)["codes"]
        valid_oids = partition_oids(extraction.oids).valid

        if not valid_oids and not individual_codes:
            return {
                "success": False,
                "message": "No ValueSet OIDs found in CQL query",
                "cqlQuery": cql_query,
                "extractedOids": extraction.oids,
                "valuesets": []
            }

        logger.info(f"Step 2: Fetching {len(valid_oids)} ValueSets from VSAC...")
        vsac_results = await vsac_service.retrieve_multiple_value_sets(valid_oids, vsac_username, vsac_password)

        logger.info("Step 3: Preparing concept data for OMOP mapping...")
        vocabulary_mapping = None
        if vocabulary_mapper is not None:
            code_systems = {c.code_system_name for vs in vsac_results.values() for c in vs.source_concepts}
            vocabulary_mapping = await vocabulary_mapper.map_code_systems(sorted(code_systems))

        concepts_for_mapping, value_set_summary = prepare_concepts_and_summary(
            vsac_results, extraction, vocabulary_mapping
        )
        individual_concepts, individual_code_mappings = prepare_individual_codes(individual_codes)
        concepts_for_mapping.extend(individual_concepts)
        logger.info(f"Prepared {len(concepts_for_mapping)} concepts for OMOP mapping")

        logger.info("Step 4: Mapping to OMOP concepts using database...")
        overridden = _database_overridden(database_user, database_endpoint, database_name, database_password)
        async with open_catalog(catalog, db_config, overridden) as active_catalog:
            omop_mapping_results = await active_catalog.map_concepts(
                concepts_for_mapping,
                db_config["schema"],
                include_verbatim=include_verbatim,
                include_standard=include_standard,
                include_mapped=include_mapped
            )

        summary = generate_mapping_summary(extraction, value_set_summary, concepts_for_mapping, omop_mapping_results)
        mapping_summary = generate_omop_mapping_summary(omop_mapping_results, concepts_for_mapping)

        return {
            "success": True,
            "message": "VSAC to OMOP mapping completed",
            "credentialsUsed": {
                "vsacUsername": mask_presence(vsac_username),
                "vsacPassword": mask_presence(vsac_password),
                "database": describe_database(db_config)
            },
            "summary": summary,
            "pipeline": {
                "step1_extraction": {
                    "extractedOids": extraction.oids,
                    "valuesets": [vs.model_dump() for vs in extraction.valuesets],
                    "totalValueSets": len(extraction.oids)
                },
                "step2_vsac_fetch": {
                    "valueSetSummary": value_set_summary,
                    "totalConceptsFromVsac": len(concepts_for_mapping) - len(individual_concepts)
                },
                "step3_omop_mapping": {
                    "conceptsByValueSet": group_concepts_by_value_set(concepts_for_mapping),
                    "mappingSummary": mapping_summary,
                    "sqlQueries": mapping_sql(db_config["schema"]),
                    "targetFactTables": target_fact_tables
                },
                "step4_final_concept_sets": {
                    mode: [c.model_dump() for c in getattr(omop_mapping_results, mode)]
                    for mode in MAPPING_MODES
                },
                "step5_individual_code_mappings": individual_code_mappings
            },
            "metadata": {
                "processingTime": timestamp(),
                "totalValueSets": len(extraction.oids),
                "totalVsacConcepts": len(concepts_for_mapping),
                "totalOmopMappings": mapping_summary["mappingCounts"]
            }
        }

    except Exception as error:
        logger.error(f"VSAC to OMOP mapping error: {error}", exc_info=True)
        return {
            "success": False,
            "error": str(error),
            "step": "Pipeline execution failed",
            "credentialsChecked": {
                "vsacUsername": mask_presence(vsac_username),
                "databasePassword": mask_presence(db_config["password"])
            },
            "timestamp": timestamp()
        }


async def debug_vsac_omop_pipeline_tool(
    vsac_service: VSACService,
    catalog: Optional[ConceptCatalog],
    step: str,
    cql_query: str,
    vsac_username: Optional[str] = None,
    vsac_password: Optional[str] = None,
    test_oids: Optional[List[str]] = None,
    database_user: Optional[str] = None,
    database_endpoint: Optional[str] = None,
    database_name: Optional[str] = None,
    database_password: Optional[str] = None,
    omop_database_schema: Optional[str] = None
) -> Dict[str, Any]:
    """Run one pipeline step (extract, fetch, map) or all of them, reporting what each produced."""
    if step not in ("extract", "fetch", "map", "all"):
        return {
            "step": step,
            "error": f"Unknown step '{step}'. Use one of: extract, fetch, map, all",
            "status": "debug_failed"
        }

    vsac_username, vsac_password = get_vsac_credentials(vsac_username, vsac_password)
    db_config = get_database_config(
        database_user, database_endpoint, database_name, database_password, omop_database_schema
    )

    results: Dict[str, Any] = {
        "environmentVariables": {
            **vsac_environment_status(),
            "DATABASE_PASSWORD": env_status(settings.database_password)
        },
        "credentialsUsed": {
            "vsacUsername": mask_presence(vsac_username),
            "database": describe_database(db_config)
        }
    }

    extraction = extract_valueset_identifiers_from_cql(cql_query)
    vsac_results: Dict[str, VSACValueSet] = {}

    try:
        if step in ("extract", "all"):
            logger.info("Testing extraction step...")
            validation = partition_oids(extraction.oids)
            results["extraction"] = {
                "extractedOids": extraction.oids,
                "valuesets": [vs.model_dump() for vs in extraction.valuesets],
                "validation": validation.model_dump(),
                "arrayAsStr": format_list_with_double_quotes(extraction.oids)
            }

        oids_to_fetch = partition_oids(test_oids or extraction.oids).valid

        if step in ("fetch", "map", "all"):
            if not oids_to_fetch:
                results["vsacFetch"] = {
                    "error": "No ValueSet OIDs available for testing",
                    "suggestion": "Run extraction step first or provide test_oids parameter"
                }
            elif not vsac_username or not vsac_password:
                results["vsacFetch"] = {
                    "error": "VSAC credentials required for fetch step",
                    "errorCode": "AUTH_REQUIRED",
                    "suggestion": "Provide vsac_username and vsac_password parameters",
                    "oidsReadyForFetch": oids_to_fetch
                }
            else:
                logger.info(f"Fetching concept sets for {len(oids_to_fetch)} ValueSet OIDs...")
                vsac_results = await vsac_service.retrieve_multiple_value_sets(
                    oids_to_fetch, vsac_username, vsac_password
                )
                results["vsacFetch"] = summarise_vsac_fetch(vsac_results)

        if step in ("map", "all"):
            logger.info("Testing OMOP mapping step...")
            concepts_to_map, _ = prepare_concepts_and_summary(vsac_results, extraction)

            if not db_config["password"]:
                results["omopMapping"] = {
                    "error": "Database password required for real OMOP mapping",
                    "suggestion": "Provide database_password parameter for database connection",
                    "inputConcepts": len(concepts_to_map),
                    "database": describe_database(db_config)
                }
            elif not concepts_to_map:
                results["omopMapping"] = {
                    "error": "No concepts available for mapping",
                    "suggestions": [
                        "Provide test_oids with ValueSet OIDs that return concepts",
                        "Check VSAC credentials if the fetch step reported errors"
                    ],
                    "inputConcepts": 0,
                    "database": describe_database(db_config)
                }
            else:
                overridden = _database_overridden(database_user, database_endpoint, database_name, database_password)
                async with open_catalog(catalog, db_config, overridden) as active_catalog:
                    omop_results = await active_catalog.map_concepts(concepts_to_map, db_config["schema"])

                results["omopMapping"] = {
                    "inputConcepts": len(concepts_to_map),
                    "conceptsByValueSet": group_concepts_by_value_set(concepts_to_map),
                    "mappingSummary": generate_omop_mapping_summary(omop_results, concepts_to_map),
                    "sqlQueries": mapping_sql(db_config["schema"]),
                    "database": describe_database(db_config)
                }

    except Exception as error:
        logger.error(f"Error in debug_vsac_omop_pipeline_tool: {error}", exc_info=True)
        return {
            "step": step,
            "error": str(error),
            "results": results,
            "status": "debug_failed"
        }

    return {
        "step": step,
        "results": results,
        "status": "debug_complete"
    }
