import logging
from typing import Dict, Any, Optional

from cql_omop.models.vsac_models import VSACValueSet

logger = logging.getLogger(__name__)


def make_cache_key(value_set_identifier: str, version: Optional[str] = None) -> str:
    return f"{value_set_identifier}_{version or 'latest'}"


class ValueSetCache:
    """
    Process-lifetime store of normalized value sets.

    Unbounded, no TTL, never evicted; entries go away only through clear().
    Entries are immutable snapshots, so concurrent writers for different keys
    never conflict and a repeated write for one key is last-writer-wins.
    """

    def __init__(self):
        self._entries: Dict[str, VSACValueSet] = {}

    def get(self, key: str) -> Optional[VSACValueSet]:
        return self._entries.get(key)

    def set(self, key: str, value_set: VSACValueSet) -> None:
        self._entries[key] = value_set

    def clear(self) -> int:
        cleared = len(self._entries)
        self._entries.clear()
        logger.info(f"VSAC cache cleared ({cleared} entries)")
        return cleared

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "keys": list(self._entries.keys())
        }

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
