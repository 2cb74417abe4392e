"""
Helper utilities for handling environment variable defaults in MCP tools.

Credential values never leave this module in tool output: callers report
them through ``mask_presence``/``env_status`` as PROVIDED/MISSING or
SET/NOT SET.
"""

from typing import Optional, Any, Dict, List, Tuple
from cql_omop.config.settings import settings

ENV_VAR_MAPPING = {
    'vsac_username': 'VSAC_USERNAME',
    'vsac_password': 'VSAC_PASSWORD',
    'database_user': 'DATABASE_USER',
    'database_endpoint': 'DATABASE_ENDPOINT',
    'database_name': 'DATABASE_NAME',
    'database_password': 'DATABASE_PASSWORD',
    'omop_database_schema': 'OMOP_DATABASE_SCHEMA',
    'username': 'VSAC_USERNAME',
    'password': 'VSAC_PASSWORD'
}


def mask_presence(value: Any) -> str:
    return "PROVIDED" if value else "MISSING"


def env_status(value: Any) -> str:
    return "SET" if value else "NOT SET"


def vsac_environment_status() -> Dict[str, str]:
    return {
        "VSAC_USERNAME": env_status(settings.vsac_username),
        "VSAC_PASSWORD": env_status(settings.vsac_password)
    }


def get_vsac_credentials(username: Optional[str] = None, password: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Get VSAC credentials with environment variable fallback."""
    actual_username = username if username else settings.vsac_username
    actual_password = password if password else settings.vsac_password
    return actual_username, actual_password


def get_database_config(
    user: Optional[str] = None,
    endpoint: Optional[str] = None,
    name: Optional[str] = None,
    password: Optional[str] = None,
    schema: Optional[str] = None,
    port: Optional[int] = None
) -> dict:
    """Get database configuration with environment variable fallback."""
    return {
        'user': user or settings.database_user,
        'endpoint': endpoint or settings.database_endpoint,
        'name': name or settings.database_name,
        'password': password or settings.database_password,
        'schema': schema or settings.omop_database_schema,
        'port': port or settings.database_port
    }


def describe_database(db_config: Dict[str, Any]) -> Dict[str, Any]:
    """Database config safe for tool output."""
    return {
        "user": db_config.get("user"),
        "endpoint": db_config.get("endpoint"),
        "database": db_config.get("name"),
        "schema": db_config.get("schema"),
        "password": mask_presence(db_config.get("password"))
    }


def validate_required_credentials(credentials: Dict[str, Any], required_keys: List[str]) -> Tuple[bool, List[str]]:
    """
    Validate that required credentials are present.

    Returns:
        Tuple of (all_present, missing_keys)
    """
    missing_keys = [key for key in required_keys if not credentials.get(key)]
    return len(missing_keys) == 0, missing_keys


def create_credentials_error_response(missing_keys: List[str], operation: str) -> dict:
    """Create a standardized error response for missing credentials."""
    missing_env_vars = [ENV_VAR_MAPPING.get(key, key.upper()) for key in missing_keys]

    return {
        "success": False,
        "error": f"Required credentials missing for {operation}",
        "errorCode": "AUTH_REQUIRED",
        "missing_credentials": missing_keys,
        "missing_environment_variables": missing_env_vars,
        "message": f"Set the following environment variables: {', '.join(missing_env_vars)}",
        "suggestion": "Run check_environment_status() for detailed setup instructions"
    }
