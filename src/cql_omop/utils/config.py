import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from cql_omop.config.settings import PROJECT_ROOT, settings

DEFAULT_CONFIG: Dict[str, Any] = {
    "pipeline": {
        "extraction_method": "regex",
        "sql_dialect": "postgresql",
        "target_fact_tables": [
            "condition_occurrence",
            "procedure_occurrence",
            "measurement",
            "drug_exposure"
        ]
    }
}


def get_project_root() -> Path:
    """Get absolute path to project root."""
    return PROJECT_ROOT


def expand_env_vars(obj):
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [expand_env_vars(v) for v in obj]
    elif isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
        env_var = obj[2:-1]
        return os.getenv(env_var, obj)
    return obj


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load config.yaml with absolute path resolution, falling back to defaults."""
    config_path = config_path or settings.config_path
    if not os.path.isabs(config_path):
        config_path = get_project_root() / config_path

    if not os.path.exists(config_path):
        return expand_env_vars(DEFAULT_CONFIG)

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    pipeline = {**DEFAULT_CONFIG["pipeline"], **(config.get("pipeline") or {})}
    return expand_env_vars({**config, "pipeline": pipeline})
