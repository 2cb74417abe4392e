import logging
import asyncio
import base64
from typing import Dict, List, Optional
import httpx
from cql_omop.config.settings import settings
from cql_omop.models.vsac_models import VSACValueSet, VSACMetadata, ValueSetOutcome
from cql_omop.services.vsac_cache import ValueSetCache, make_cache_key
from cql_omop.services.vsac_parser import parse_vsac_response
from cql_omop.utils.error_handlers import (
    VSACError, VSACCredentialsError, raise_for_vsac_status, classify_transport_error
)

logger = logging.getLogger(__name__)

USER_AGENT = "OMOP-NLP-MCP/1.0"


def create_basic_auth(username: Optional[str], password: Optional[str]) -> str:
    """Create basic authentication header from whitespace-stripped credentials."""
    if not username or not password or not username.strip() or not password.strip():
        raise VSACCredentialsError(
            "VSAC username and password are required. "
            "Set VSAC_USERNAME and VSAC_PASSWORD or pass them to the tool."
        )

    credentials = f"{username.strip()}:{password.strip()}"
    encoded = base64.b64encode(credentials.encode('utf-8')).decode('utf-8')
    return f"Basic {encoded}"


def make_error_shell(oid: str, error: Exception) -> VSACValueSet:
    """Placeholder entry for an OID whose retrieval failed inside a batch."""
    return VSACValueSet(
        metadata=VSACMetadata(id=oid, display_name='Error', status='ERROR'),
        concepts=[],
        outcome=ValueSetOutcome.FETCH_ERROR,
        error=str(error)
    )


class VSACService:
    """
    Client for the VSAC SVS ``RetrieveMultipleValueSets`` endpoint.

    The cache is owned by the caller so that one process-wide store can be
    shared between tools; ``transport`` lets tests swap in an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        cache: Optional[ValueSetCache] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.cache = cache if cache is not None else ValueSetCache()
        self.base_url = base_url or settings.vsac_base_url
        if not self.base_url.endswith("/"):
            self.base_url += "/"
        self.timeout = timeout or settings.vsac_timeout
        self.transport = transport

    async def fetch_raw_xml(
        self,
        value_set_identifier: str,
        version: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> str:
        """GET the raw SVS payload for one value set. Raises VSACError subclasses."""
        auth_header = create_basic_auth(username, password)

        endpoint = self.base_url + "RetrieveMultipleValueSets"
        params = {"id": value_set_identifier}
        if version:
            params["version"] = version

        headers = {
            "Authorization": auth_header,
            "Accept": "application/xml",
            "User-Agent": USER_AGENT
        }

        logger.debug(f"Making request to: {endpoint} with params {params}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(endpoint, headers=headers, params=params)
        except httpx.HTTPError as error:
            logger.error(f"HTTP error querying VSAC for {value_set_identifier}: {error}")
            raise classify_transport_error(error, value_set_identifier) from error

        logger.info(f"VSAC response status for {value_set_identifier}: {response.status_code}")
        raise_for_vsac_status(response, value_set_identifier)

        return response.text

    async def retrieve_value_set(
        self,
        value_set_identifier: str,
        version: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> VSACValueSet:
        """Retrieve one value set, serving repeats from the cache."""
        cache_key = make_cache_key(value_set_identifier, version)

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"Cache hit for value set: {value_set_identifier}")
            return cached

        logger.info(f"Fetching value set from VSAC: {value_set_identifier}")

        response_text = await self.fetch_raw_xml(value_set_identifier, version, username, password)
        logger.debug(f"Response length: {len(response_text)} characters")

        parsed_data = parse_vsac_response(response_text)

        # Sentinel results are cached too; only transport failures are not
        self.cache.set(cache_key, parsed_data)

        return parsed_data

    async def retrieve_multiple_value_sets(
        self,
        value_set_ids: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        concurrency: Optional[int] = None
    ) -> Dict[str, VSACValueSet]:
        """
        Retrieve several value sets in windows of ``concurrency`` requests.

        Each window is awaited before the next one starts. A failing OID never
        fails the batch: it is reported as a fetch-error entry carrying the
        error message, so the result has exactly one entry per unique OID.
        """
        concurrency = max(1, concurrency or settings.vsac_batch_concurrency)
        unique_ids = list(dict.fromkeys(value_set_ids))
        results: Dict[str, VSACValueSet] = {}

        logger.info(f"Retrieving {len(unique_ids)} value sets with concurrency limit of {concurrency}")

        async def fetch_single(oid: str):
            try:
                value_set = await self.retrieve_value_set(oid, None, username, password)
            except Exception as err:
                logger.error(f"Failed to retrieve value set {oid}: {err}")
                return oid, make_error_shell(oid, err)

            if not value_set.metadata.id:
                value_set = value_set.model_copy(
                    update={"metadata": value_set.metadata.model_copy(update={"id": oid})}
                )
            return oid, value_set

        for i in range(0, len(unique_ids), concurrency):
            window = unique_ids[i:i + concurrency]
            logger.debug(f"Processing batch {i // concurrency + 1}: {window}")

            for oid, value_set in await asyncio.gather(*(fetch_single(oid) for oid in window)):
                results[oid] = value_set

        failed = sum(1 for vs in results.values() if vs.outcome == ValueSetOutcome.FETCH_ERROR)
        logger.info(f"Batch retrieval completed: {len(results) - failed} retrieved, {failed} failed")
        return results

    def get_cache_stats(self) -> Dict[str, object]:
        return self.cache.stats()

    def clear_cache(self) -> int:
        return self.cache.clear()


__all__ = ["VSACService", "VSACError", "create_basic_auth", "make_error_shell"]
