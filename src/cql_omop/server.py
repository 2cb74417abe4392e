import json
import logging
from typing import Optional, List

from mcp.server.fastmcp import FastMCP
from cql_omop.tools.parse_nl_to_cql import (
    parse_nl_to_cql_tool,
    extract_valuesets_tool,
    valueset_regex_extraction_tool
)
from cql_omop.tools.fetch_vsac import (
    fetch_multiple_vsac_tool,
    fetch_vsac_tool,
    inspect_vsac_xml_tool,
    vsac_cache_status_tool,
    clear_vsac_cache_tool
)
from cql_omop.tools.env_status_tool import check_environment_status_tool
from cql_omop.tools.lookup_code import lookup_code_tool
from cql_omop.tools.map_vsac_to_omop import (
    map_vsac_to_omop_tool,
    debug_vsac_omop_pipeline_tool
)
from cql_omop.tools.process_cql_query import process_cql_query_tool
from cql_omop.resources.config import config_resource
from cql_omop.resources.schema import omop_schema_resource
from cql_omop.services.database_service import ConceptCatalog
from cql_omop.services.vocabulary_mapper import VocabularyMapper
from cql_omop.services.vsac_cache import ValueSetCache
from cql_omop.services.vsac_services import VSACService

logger = logging.getLogger(__name__)

SERVER_NAME = "CQL-OMOP-Translator"


def create_omop_server(
    vsac_service: Optional[VSACService] = None,
    catalog: Optional[ConceptCatalog] = None
) -> FastMCP:
    """
    Create and configure the MCP server.

    This is the composition root: the value set cache, the VSAC client and
    the concept catalog are built here once and shared by every tool.
    """
    vsac_service = vsac_service or VSACService(cache=ValueSetCache())
    catalog = catalog or ConceptCatalog()

    mcp = FastMCP(SERVER_NAME)

    @mcp.tool()
    async def parse_nl_to_cql(query: str, include_input: bool = False) -> dict:
        """Convert natural language query to CQL and report the value sets it declares."""
        return await parse_nl_to_cql_tool(query, include_input)

    @mcp.tool()
    async def extract_valuesets(cql_query: str, include_input: bool = False, method: Optional[str] = None) -> dict:
        """Extract ValueSets from CQL with minimal output. method: "regex" or "llm"."""
        return await extract_valuesets_tool(cql_query, include_input, method)

    @mcp.tool()
    async def valueset_regex_extraction(
        cql_query: str,
        show_details: bool = False,
        include_input: bool = False
    ) -> dict:
        """Test regex extraction patterns on CQL."""
        return await valueset_regex_extraction_tool(cql_query, show_details, include_input)

    @mcp.tool()
    async def fetch_multiple_vsac(
        value_set_ids: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> dict:
        """Fetch multiple ValueSets from VSAC."""
        return await fetch_multiple_vsac_tool(vsac_service, value_set_ids, username, password)

    @mcp.tool()
    async def fetch_vsac(
        value_set_id: str,
        version: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> dict:
        """Fetch a single ValueSet from VSAC, optionally pinned to a version."""
        return await fetch_vsac_tool(vsac_service, value_set_id, version, username, password)

    @mcp.tool()
    async def inspect_vsac_xml(
        value_set_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> dict:
        """Show the raw VSAC XML for a ValueSet next to its parsed form."""
        return await inspect_vsac_xml_tool(vsac_service, value_set_id, username, password)

    @mcp.tool()
    async def vsac_cache_status() -> dict:
        """Get VSAC cache status and environment variable info."""
        return await vsac_cache_status_tool(vsac_service)

    @mcp.tool()
    async def clear_vsac_cache() -> dict:
        """Drop every cached ValueSet."""
        return await clear_vsac_cache_tool(vsac_service)

    @mcp.tool()
    async def map_vsac_to_omop(
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
        use_llm_vocabulary_mapping: bool = False
    ) -> dict:
        """Complete VSAC to OMOP mapping pipeline."""
        return await map_vsac_to_omop_tool(
            vsac_service,
            catalog,
            cql_query,
            vsac_username,
            vsac_password,
            database_user,
            database_endpoint,
            database_name,
            database_password,
            omop_database_schema,
            include_verbatim,
            include_standard,
            include_mapped,
            target_fact_tables,
            VocabularyMapper() if use_llm_vocabulary_mapping else None
        )

    @mcp.tool()
    async def debug_vsac_omop_pipeline(
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
    ) -> dict:
        """Debug VSAC to OMOP pipeline steps: extract, fetch, map or all."""
        return await debug_vsac_omop_pipeline_tool(
            vsac_service,
            catalog,
            step,
            cql_query,
            vsac_username,
            vsac_password,
            test_oids,
            database_user,
            database_endpoint,
            database_name,
            database_password,
            omop_database_schema
        )

    @mcp.tool()
    async def process_cql_query(
        cql_query: str,
        vsac_username: Optional[str] = None,
        vsac_password: Optional[str] = None,
        database_password: Optional[str] = None,
        omop_database_schema: Optional[str] = None,
        target_fact_tables: Optional[List[str]] = None
    ) -> dict:
        """Run CQL through VSAC and the OMOP vocabulary and generate SQL."""
        return await process_cql_query_tool(
            vsac_service,
            catalog,
            cql_query,
            vsac_username,
            vsac_password,
            database_password,
            omop_database_schema,
            target_fact_tables
        )

    @mcp.tool()
    async def lookup_code(
        code: str,
        vocabulary: str,
        display: Optional[str] = None,
        database_user: Optional[str] = None,
        database_endpoint: Optional[str] = None,
        database_name: Optional[str] = None,
        database_password: Optional[str] = None,
        omop_database_schema: Optional[str] = None
    ) -> dict:
        """Look up a single code (LOINC, SNOMED, ...) and map it to OMOP concepts."""
        return await lookup_code_tool(
            catalog, code, vocabulary, display, database_user, database_endpoint,
            database_name, database_password, omop_database_schema
        )

    @mcp.tool()
    async def check_environment_status() -> dict:
        """Check environment variable status and get setup guidance."""
        return await check_environment_status_tool()

    @mcp.resource("config://current")
    async def get_config() -> str:
        """Get current configuration including environment variable status."""
        return json.dumps(await config_resource(), indent=2)

    @mcp.resource("omop://schema/cdm")
    async def get_omop_schema() -> str:
        """Get OMOP schema information."""
        return json.dumps(await omop_schema_resource(), indent=2)

    @mcp.prompt()
    async def vsac_omop_workflow() -> str:
        """Workflow for turning CQL into OMOP concept sets and SQL."""
        return """
    # CQL to OMOP Workflow

    Call the tools in this order. Credentials default to the server environment.

    ## Step 1: Check the environment
    Call: `check_environment_status()`

    ## Step 2: Extract ValueSets
    Call: `valueset_regex_extraction(cql_query, show_details=True)`
    Returns: extracted value sets and valid/invalid OIDs

    ## Step 3: Fetch concepts from VSAC
    Call: `fetch_multiple_vsac(value_set_ids)`
    Returns: concepts per OID; failed OIDs carry an error instead of concepts

    ## Before you proceed to the next step, ask for permission.

    ## Step 4: Map to OMOP
    Call: `map_vsac_to_omop(cql_query)`
    Returns: verbatim, standard and mapped OMOP concepts with summaries

    ## Step 5: Generate SQL
    Call: `process_cql_query(cql_query)`
    Returns: final SQL and a troubleshooting report

    If a step fails, call `debug_vsac_omop_pipeline(step, cql_query)` for that step.
    """

    logger.info("OMOP MCP server created with shared VSAC cache")
    return mcp
