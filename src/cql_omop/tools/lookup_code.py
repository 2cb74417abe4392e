import logging
from typing import Dict, Any, Optional
from cql_omop.services.database_service import ConceptCatalog, open_catalog
from cql_omop.utils.env_helpers import get_database_config, describe_database
from cql_omop.utils.extractors import map_vsac_to_omop_vocabulary

logger = logging.getLogger(__name__)


async def lookup_code_tool(
    catalog: Optional[ConceptCatalog],
    code: str,
    vocabulary: str,
    display: Optional[str] = None,
    database_user: Optional[str] = None,
    database_endpoint: Optional[str] = None,
    database_name: Optional[str] = None,
    database_password: Optional[str] = None,
    omop_database_schema: Optional[str] = None
) -> Dict[str, Any]:
    """
    Look up one source code (e.g. LOINC or SNOMED) in the OMOP vocabulary.

    ``vocabulary`` may be a VSAC code system name; it is translated to the
    OMOP vocabulary_id before querying.
    """
    vocabulary_id = map_vsac_to_omop_vocabulary(vocabulary)
    db_config = get_database_config(
        database_user, database_endpoint, database_name, database_password, omop_database_schema
    )

    if not db_config["password"]:
        return {
            "success": False,
            "error": "Database password is required",
            "message": "Set DATABASE_PASSWORD environment variable, or pass it as a parameter",
            "code": code,
            "vocabulary": vocabulary_id
        }

    overridden = any(v is not None for v in (database_user, database_endpoint, database_name, database_password))
    try:
        async with open_catalog(catalog, db_config, overridden) as active_catalog:
            result = await active_catalog.lookup_code(code, vocabulary_id, db_config["schema"])
    except Exception as error:
        logger.error(f"Error looking up {vocabulary_id} code {code}: {error}")
        return {
            "success": False,
            "error": str(error),
            "code": code,
            "vocabulary": vocabulary_id,
            "database": describe_database(db_config)
        }

    clean_code = code.replace('-', '_').replace('.', '_')
    return {
        "success": True,
        "display": display,
        "placeholder": f"PLACEHOLDER_{vocabulary_id.upper()}_{clean_code}",
        **result,
        "database": describe_database(db_config)
    }
