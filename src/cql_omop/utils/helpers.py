import json
from datetime import datetime
from typing import List


def format_list_with_double_quotes(items: List[str]) -> str:
    """
    Format a list of strings as a JSON array for copy-paste.

    Example:
        Input: ['2.16.840.1.113883.3.464.1003.103.12.1001']
        Output: '["2.16.840.1.113883.3.464.1003.103.12.1001"]'
    """
    return json.dumps(list(items))


def timestamp() -> str:
    return datetime.now().isoformat()


def preview(text: str, limit: int = 2000) -> str:
    """First ``limit`` characters of ``text`` with a truncation marker."""
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [truncated {len(text) - limit} characters]"
