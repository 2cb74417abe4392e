import re
from contextlib import asynccontextmanager
import logging
from typing import List, Dict, Any, Optional
import asyncpg
from cql_omop.config.settings import settings
from cql_omop.models.omop_models import OMOPConcept, ConceptMapping, MappingResults

logger = logging.getLogger(__name__)

SCHEMA_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

VERBATIM_QUERY = """
SELECT c.concept_id, c.concept_code, c.vocabulary_id,
       c.domain_id, c.concept_class_id, c.concept_name,
       c.standard_concept
FROM {schema}.concept c
WHERE c.concept_code = $1 AND c.vocabulary_id = $2
ORDER BY c.concept_id
"""

STANDARD_QUERY = """
SELECT c.concept_id, c.concept_code, c.vocabulary_id,
       c.domain_id, c.concept_class_id, c.concept_name,
       c.standard_concept
FROM {schema}.concept c
WHERE c.concept_code = $1 AND c.vocabulary_id = $2
AND c.standard_concept = 'S'
ORDER BY c.concept_id
"""

MAPPED_QUERY = """
SELECT cr.concept_id_2 AS concept_id, c.concept_code, c.vocabulary_id,
       c.concept_id AS source_concept_id, cr.relationship_id,
       target_c.concept_name, target_c.domain_id, target_c.concept_class_id,
       target_c.standard_concept
FROM {schema}.concept c
INNER JOIN {schema}.concept_relationship cr
ON c.concept_id = cr.concept_id_1
AND cr.relationship_id = 'Maps to'
INNER JOIN {schema}.concept target_c
ON cr.concept_id_2 = target_c.concept_id
WHERE c.concept_code = $1 AND c.vocabulary_id = $2
ORDER BY cr.concept_id_2
"""

QUERIES = {
    "verbatim": VERBATIM_QUERY,
    "standard": STANDARD_QUERY,
    "mapped": MAPPED_QUERY
}


def validate_schema_name(schema: str) -> str:
    """Schema names are interpolated into SQL, so only plain identifiers pass."""
    if not schema or not SCHEMA_NAME_PATTERN.match(schema):
        raise ValueError(f"Invalid database schema name: {schema!r}")
    return schema


class ConceptCatalog:
    """
    OMOP vocabulary lookups against ``concept`` and ``concept_relationship``.

    Three modes are supported: ``verbatim`` (exact code and vocabulary),
    ``standard`` (verbatim restricted to standard concepts) and ``mapped``
    (follow 'Maps to' to the standard target).
    """

    def __init__(self, pool: Optional[asyncpg.Pool] = None, db_config: Optional[Dict[str, Any]] = None):
        self.pool = pool
        self.db_config = db_config or {}

    async def get_connection_pool(self) -> asyncpg.Pool:
        """Get or create database connection pool."""
        if self.pool is None:
            config = {
                "user": settings.database_user,
                "endpoint": settings.database_endpoint,
                "name": settings.database_name,
                "password": settings.database_password,
                "port": settings.database_port,
                **{k: v for k, v in self.db_config.items() if v is not None}
            }
            logger.info(f"Connecting to OMOP database {config['name']} at {config['endpoint']}:{config['port']}")
            self.pool = await asyncpg.create_pool(
                user=config["user"],
                password=config["password"],
                database=config["name"],
                host=config["endpoint"],
                port=config["port"],
                min_size=1,
                max_size=10
            )
        return self.pool

    async def close_pool(self):
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None

    async def run_query(
        self,
        mode: str,
        concepts: List[ConceptMapping],
        schema: str
    ) -> List[OMOPConcept]:
        """Run one lookup mode for every concept; a failing concept is logged and skipped."""
        query = QUERIES[mode].format(schema=validate_schema_name(schema))
        pool = await self.get_connection_pool()

        results = []
        async with pool.acquire() as conn:
            for concept in concepts:
                try:
                    rows = await conn.fetch(query, concept.concept_code, concept.vocabulary_id)
                except asyncpg.PostgresError as error:
                    logger.error(f"Error in {mode} query for {concept.concept_code}: {error}")
                    continue

                for row in rows:
                    results.append(self._row_to_concept(row, concept, mode))

        logger.info(f"{mode} query matched {len(results)} OMOP concepts for {len(concepts)} codes")
        return results

    @staticmethod
    def _row_to_concept(row, concept: ConceptMapping, mode: str) -> OMOPConcept:
        row = dict(row)
        return OMOPConcept(
            concept_set_id=concept.concept_set_id,
            concept_set_name=concept.concept_set_name,
            concept_id=row['concept_id'],
            concept_code=row['concept_code'],
            vocabulary_id=row['vocabulary_id'],
            domain_id=row.get('domain_id'),
            concept_class_id=row.get('concept_class_id'),
            concept_name=row.get('concept_name'),
            standard_concept=row.get('standard_concept'),
            source_concept_id=row.get('source_concept_id'),
            relationship_id=row.get('relationship_id'),
            source_vocabulary=concept.original_vocabulary,
            mapping_type=mode
        )

    async def execute_verbatim_query(self, concepts: List[ConceptMapping], schema: str) -> List[OMOPConcept]:
        return await self.run_query("verbatim", concepts, schema)

    async def execute_standard_query(self, concepts: List[ConceptMapping], schema: str) -> List[OMOPConcept]:
        return await self.run_query("standard", concepts, schema)

    async def execute_mapped_query(self, concepts: List[ConceptMapping], schema: str) -> List[OMOPConcept]:
        return await self.run_query("mapped", concepts, schema)

    async def map_concepts(
        self,
        concepts: List[ConceptMapping],
        schema: str,
        include_verbatim: bool = True,
        include_standard: bool = True,
        include_mapped: bool = True
    ) -> MappingResults:
        """Run the selected modes; a mode that fails outright is recorded in ``errors``."""
        results = MappingResults()
        if not concepts:
            return results

        selected = [
            ("verbatim", include_verbatim, self.execute_verbatim_query),
            ("standard", include_standard, self.execute_standard_query),
            ("mapped", include_mapped, self.execute_mapped_query)
        ]

        for mode, enabled, execute in selected:
            if not enabled:
                continue
            try:
                setattr(results, mode, await execute(concepts, schema))
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, ValueError) as error:
                logger.error(f"{mode} mapping failed: {error}")
                results.errors[mode] = str(error)

        return results

    async def lookup_code(
        self,
        code: str,
        vocabulary_id: str,
        schema: str,
        include_mapped: bool = True
    ) -> Dict[str, Any]:
        """Look up a single source code in every mode."""
        concept = ConceptMapping(
            concept_set_id=f"{vocabulary_id}:{code}",
            concept_set_name=f"{vocabulary_id} {code}",
            concept_code=code,
            vocabulary_id=vocabulary_id,
            original_vocabulary=vocabulary_id,
            display_name=code,
            is_individual_code=True
        )
        results = await self.map_concepts(
            [concept], schema,
            include_verbatim=True,
            include_standard=True,
            include_mapped=include_mapped
        )
        return {
            "code": code,
            "vocabulary": vocabulary_id,
            "found": bool(results.verbatim),
            "concepts": [c.model_dump() for c in results.verbatim],
            "standardConcepts": [c.model_dump() for c in results.standard],
            "mappedConcepts": [c.model_dump() for c in results.mapped],
            "errors": results.errors
        }


@asynccontextmanager
async def open_catalog(catalog: Optional[ConceptCatalog], db_config: Dict[str, Any], overridden: bool = False):
    """
    Yield the shared catalog, or a short-lived one when the caller passed its
    own connection parameters. Short-lived catalogs are closed on exit.
    """
    if catalog is not None and not overridden:
        yield catalog
        return

    scoped = ConceptCatalog(db_config=db_config)
    try:
        yield scoped
    finally:
        await scoped.close_pool()
