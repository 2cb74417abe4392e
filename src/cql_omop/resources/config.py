from typing import Dict, Any
from cql_omop.config.settings import settings
from cql_omop.utils.config import load_config
from cql_omop.utils.env_helpers import env_status


async def config_resource() -> Dict[str, Any]:
    """Get current configuration resource with environment variable status."""
    return {
        "server_info": {
            "name": "CQL-OMOP-Translator",
            "version": "1.0.0",
            "capabilities": ["nl-to-cql", "valueset-extraction", "vsac-integration", "omop-mapping", "sql-generation"]
        },
        "llm_configuration": {
            "provider": settings.llm_provider,
            "model": {
                "openai": settings.openai_model,
                "azure_openai": settings.azure_openai_model,
                "anthropic": settings.anthropic_model
            }
        },
        "vsac_configuration": {
            "base_url": settings.vsac_base_url,
            "timeout_seconds": settings.vsac_timeout,
            "batch_concurrency": settings.vsac_batch_concurrency
        },
        "pipeline": load_config()["pipeline"],
        "environment_variables": {
            "llm_credentials": {
                "OPENAI_API_KEY": env_status(settings.openai_api_key),
                "AZURE_OPENAI_API_KEY": env_status(settings.azure_openai_api_key),
                "AZURE_OPENAI_ENDPOINT": env_status(settings.azure_openai_endpoint),
                "ANTHROPIC_API_KEY": env_status(settings.anthropic_api_key)
            },
            "vsac_credentials": {
                "VSAC_USERNAME": env_status(settings.vsac_username),
                "VSAC_PASSWORD": env_status(settings.vsac_password)
            },
            "database_credentials": {
                "DATABASE_USER": settings.database_user,
                "DATABASE_ENDPOINT": settings.database_endpoint,
                "DATABASE_NAME": settings.database_name,
                "DATABASE_PORT": settings.database_port,
                "DATABASE_PASSWORD": env_status(settings.database_password),
                "OMOP_DATABASE_SCHEMA": settings.omop_database_schema
            }
        },
        "usage_examples": {
            "simple_vsac_fetch": "fetch_multiple_vsac(['2.16.840.1.113883.3.464.1003.103.12.1001']) - uses env vars automatically",
            "single_vsac_fetch": "fetch_vsac('2.16.840.1.113883.3.464.1003.103.12.1001', version='2024')",
            "full_pipeline": "map_vsac_to_omop('cql_query') - uses all env vars automatically"
        }
    }
