"""
Tool to check environment variable status and provide setup guidance.
"""

import logging
import os
from typing import Dict, Any
from cql_omop.config.settings import settings
from cql_omop.utils.env_helpers import env_status

logger = logging.getLogger(__name__)

DIRECT_ENV_VARS = [
    'VSAC_USERNAME', 'VSAC_PASSWORD', 'DATABASE_PASSWORD', 'LLM_PROVIDER',
    'OPENAI_API_KEY', 'AZURE_OPENAI_API_KEY', 'AZURE_OPENAI_ENDPOINT', 'ANTHROPIC_API_KEY'
]


def _llm_ready() -> bool:
    if settings.llm_provider == "openai":
        return bool(settings.openai_api_key)
    if settings.llm_provider == "azure-openai":
        return bool(settings.azure_openai_api_key and settings.azure_openai_endpoint)
    if settings.llm_provider == "anthropic":
        return bool(settings.anthropic_api_key)
    return False


def _env_file_template() -> str:
    lines = [
        "# LLM Provider Configuration",
        f"LLM_PROVIDER={settings.llm_provider}",
        ""
    ]

    if settings.llm_provider == "azure-openai":
        lines += [
            "# Azure OpenAI",
            "AZURE_OPENAI_API_KEY=your_azure_api_key_here",
            "AZURE_OPENAI_ENDPOINT=https://your-resource.openai.azure.com/",
            "AZURE_OPENAI_MODEL=gpt-4"
        ]
    elif settings.llm_provider == "anthropic":
        lines += ["# Anthropic", "ANTHROPIC_API_KEY=your_anthropic_api_key_here"]
    else:
        lines += ["# OpenAI", "OPENAI_API_KEY=your_openai_api_key_here"]

    lines += [
        "",
        "# VSAC (UMLS) Credentials",
        "VSAC_USERNAME=your_umls_username",
        "VSAC_PASSWORD=your_umls_password",
        "",
        "# Database Configuration",
        f"DATABASE_USER={settings.database_user}",
        f"DATABASE_ENDPOINT={settings.database_endpoint}",
        f"DATABASE_NAME={settings.database_name}",
        f"DATABASE_PORT={settings.database_port}",
        "DATABASE_PASSWORD=your_database_password",
        f"OMOP_DATABASE_SCHEMA={settings.omop_database_schema}"
    ]
    return "\n".join(lines)


async def check_environment_status_tool() -> Dict[str, Any]:
    """
    Check environment variable status and provide setup guidance.

    Secrets are only ever reported as SET or NOT SET.
    """
    env_file_status = settings.get_env_file_status()

    environment_status = {
        "llm_provider": {
            "current": settings.llm_provider,
            "openai_api_key": env_status(settings.openai_api_key),
            "azure_openai_api_key": env_status(settings.azure_openai_api_key),
            "azure_openai_endpoint": env_status(settings.azure_openai_endpoint),
            "anthropic_api_key": env_status(settings.anthropic_api_key)
        },
        "vsac": {
            "username": env_status(settings.vsac_username),
            "password": env_status(settings.vsac_password),
            "base_url": settings.vsac_base_url
        },
        "database": {
            "user": settings.database_user,
            "endpoint": settings.database_endpoint,
            "name": settings.database_name,
            "port": settings.database_port,
            "password": env_status(settings.database_password),
            "schema": settings.omop_database_schema
        }
    }

    # Distinguishes "not set" from "set but not loaded"
    direct_env_check = {var: env_status(os.getenv(var)) for var in DIRECT_ENV_VARS}

    llm_ready = _llm_ready()
    vsac_ready = bool(settings.vsac_username and settings.vsac_password)
    database_ready = bool(settings.database_password)

    readiness = {
        "llm_parsing": llm_ready,
        "vsac_integration": vsac_ready,
        "omop_mapping": database_ready,
        "overall": llm_ready and vsac_ready and database_ready
    }

    setup_instructions = []
    if not env_file_status['env_file_exists']:
        setup_instructions.append(".env file does not exist - create it in the project root")
    if not llm_ready:
        if settings.llm_provider == "azure-openai":
            setup_instructions.append("Set AZURE_OPENAI_API_KEY and AZURE_OPENAI_ENDPOINT in your .env file")
        elif settings.llm_provider == "anthropic":
            setup_instructions.append("Set ANTHROPIC_API_KEY in your .env file")
        else:
            setup_instructions.append("Set OPENAI_API_KEY in your .env file")
    if not vsac_ready:
        setup_instructions.append("Set VSAC_USERNAME and VSAC_PASSWORD (your UMLS credentials) in your .env file")
    if not database_ready:
        setup_instructions.append("Set DATABASE_PASSWORD in your .env file")

    potential_issues = []
    if not env_file_status['env_file_exists']:
        potential_issues.append(".env file not found - this is the most likely issue")
    if env_file_status['env_file_exists'] and not vsac_ready:
        potential_issues.append("Environment file exists but VSAC credentials not loaded - check file format")

    return {
        "environment_status": environment_status,
        "direct_environment_check": direct_env_check,
        "env_file_status": env_file_status,
        "readiness": readiness,
        "setup_required": not readiness["overall"],
        "setup_instructions": setup_instructions,
        "diagnostics": {
            "pydantic_settings_loading": "Environment variables loaded through Pydantic Settings",
            "env_file_path_used": env_file_status['env_file_path'],
            "potential_issues": potential_issues
        },
        "tool_capabilities": {
            "parse_nl_to_cql": {"requires": "LLM credentials", "ready": llm_ready},
            "fetch_multiple_vsac": {"requires": "VSAC credentials", "ready": vsac_ready},
            "map_vsac_to_omop": {"requires": "VSAC and database credentials", "ready": vsac_ready and database_ready},
            "process_cql_query": {"requires": "All credentials", "ready": readiness["overall"]},
            "debug_vsac_omop_pipeline": {"requires": "Varies by step", "ready": True}
        },
        "env_file_template": _env_file_template(),
        "usage_tips": [
            "All tools use environment variables by default - no need to pass credentials manually",
            "You can still override by passing parameters explicitly to tools",
            "Use the config://current resource to check current configuration",
            "Restart the MCP server after editing the .env file"
        ]
    }
