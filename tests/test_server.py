import json

import pytest

from cql_omop.resources.config import config_resource
from cql_omop.resources.schema import omop_schema_resource
from cql_omop.server import SERVER_NAME, create_omop_server
from cql_omop.services.database_service import ConceptCatalog
from cql_omop.services.vsac_cache import ValueSetCache, make_cache_key
from cql_omop.services.vsac_parser import parse_vsac_response
from cql_omop.services.vsac_services import VSACService
from cql_omop.utils.config import DEFAULT_CONFIG, load_config

from conftest import DIABETES_OID, FakeConnection, FakePool, xml_for

EXPECTED_TOOLS = {
    "parse_nl_to_cql",
    "extract_valuesets",
    "valueset_regex_extraction",
    "fetch_multiple_vsac",
    "fetch_vsac",
    "inspect_vsac_xml",
    "vsac_cache_status",
    "clear_vsac_cache",
    "map_vsac_to_omop",
    "debug_vsac_omop_pipeline",
    "process_cql_query",
    "lookup_code",
    "check_environment_status",
}


def build_server():
    service = VSACService(cache=ValueSetCache())
    catalog = ConceptCatalog(pool=FakePool(FakeConnection()))
    return create_omop_server(service, catalog), service


class TestServerRegistration:
    @pytest.mark.asyncio
    async def test_tools_are_registered(self):
        mcp, _ = build_server()

        tools = await mcp.list_tools()

        assert mcp.name == SERVER_NAME
        assert {tool.name for tool in tools} == EXPECTED_TOOLS

    @pytest.mark.asyncio
    async def test_resources_and_prompt(self):
        mcp, _ = build_server()

        resources = {str(resource.uri) for resource in await mcp.list_resources()}
        prompts = {prompt.name for prompt in await mcp.list_prompts()}

        assert resources == {"config://current", "omop://schema/cdm"}
        assert prompts == {"vsac_omop_workflow"}

    @pytest.mark.asyncio
    async def test_tools_share_the_injected_cache(self):
        mcp, service = build_server()

        service.cache.set(make_cache_key(DIABETES_OID), parse_vsac_response(xml_for(DIABETES_OID)))

        await mcp.call_tool("clear_vsac_cache", {})

        assert len(service.cache) == 0


class TestResources:
    @pytest.mark.asyncio
    async def test_config_resource_masks_secrets(self, vsac_credentials, database_password):
        config = await config_resource()

        dumped = json.dumps(config)
        assert "env-secret-password" not in dumped
        assert "db-secret-password" not in dumped
        assert config["environment_variables"]["vsac_credentials"]["VSAC_PASSWORD"] == "SET"
        assert config["pipeline"]["extraction_method"] == "regex"

    @pytest.mark.asyncio
    async def test_schema_resource(self):
        schema = await omop_schema_resource()

        assert "concept" in json.dumps(schema)


class TestLoadConfig:
    def test_project_config(self):
        pipeline = load_config()["pipeline"]

        assert pipeline["sql_dialect"] == "postgresql"
        assert "condition_occurrence" in pipeline["target_fact_tables"]

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        assert load_config(str(tmp_path / "absent.yaml")) == DEFAULT_CONFIG

    def test_partial_file_is_merged_with_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("pipeline:\n  sql_dialect: sqlserver\n")

        pipeline = load_config(str(config_file))["pipeline"]

        assert pipeline["sql_dialect"] == "sqlserver"
        assert pipeline["extraction_method"] == "regex"
