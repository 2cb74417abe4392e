"""
JSON utility functions for handling various model response formats.
"""
import re
import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ```json ... ``` or ``` ... ```
CODE_FENCE_PATTERN = re.compile(r'```(?:json|sql|cql)?\s*\n?(.*?)```', re.DOTALL | re.IGNORECASE)

EXPECTED_KEYS = {'oids', 'mappings', 'sql', 'cql', 'valuesets', 'codes'}
WRAPPER_KEYS = ('result', 'output', 'response', 'data', 'final', 'json')


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text itself."""
    if not text:
        return ""
    match = CODE_FENCE_PATTERN.search(text)
    return match.group(1).strip() if match else text.strip()


def unwrap_json_response(response: Any) -> Any:
    """
    Universal JSON unwrapper that handles various model response formats.

    Handles:
    - Direct JSON objects (no wrapper)
    - Single-key wrappers with dict values
    - Single-key wrappers with stringified JSON values
    - Nested wrappers
    """
    if not isinstance(response, dict):
        return response

    if any(key in response for key in EXPECTED_KEYS):
        return response

    if len(response) == 1:
        wrapper_key, wrapped_value = next(iter(response.items()))
        logger.debug(f"Detected single-key wrapper: '{wrapper_key}'")

        if isinstance(wrapped_value, str):
            parsed = safe_json_parse(wrapped_value)
            return response if parsed is None else unwrap_json_response(parsed)
        if isinstance(wrapped_value, dict):
            return unwrap_json_response(wrapped_value)
        return wrapped_value

    for key in WRAPPER_KEYS:
        if key in response:
            wrapped_value = response[key]
            if isinstance(wrapped_value, str):
                parsed = safe_json_parse(wrapped_value)
                if parsed is not None:
                    return unwrap_json_response(parsed)
            elif isinstance(wrapped_value, dict):
                return unwrap_json_response(wrapped_value)

    return response


def safe_json_parse(text: str) -> Optional[Any]:
    """
    Safely parse JSON text with error handling.

    Returns:
        Parsed JSON value or None if parsing fails
    """
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug(f"JSON parsing failed: {e}")
        return None


def parse_llm_json(content: str) -> Optional[Any]:
    """Parse an LLM reply that should be JSON, tolerating code fences and wrappers."""
    parsed = safe_json_parse(strip_code_fences(content))
    if parsed is None:
        return None
    return unwrap_json_response(parsed)
