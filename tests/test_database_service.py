import pytest

from cql_omop.models.omop_models import ConceptMapping
from cql_omop.services.database_service import ConceptCatalog, open_catalog, validate_schema_name

from conftest import DIABETES_OID, FakeConnection, FakePool, concept_row


def concept(code, vocabulary_id, concept_set_id=DIABETES_OID):
    return ConceptMapping(
        concept_set_id=concept_set_id,
        concept_set_name="Diabetes",
        concept_code=code,
        vocabulary_id=vocabulary_id,
        original_vocabulary="SNOMEDCT" if vocabulary_id == "SNOMED" else vocabulary_id,
        display_name=f"Concept {code}"
    )


ROWS = {
    ("verbatim", "44054006", "SNOMED"): [concept_row(201826, "44054006", "SNOMED")],
    ("standard", "44054006", "SNOMED"): [concept_row(201826, "44054006", "SNOMED")],
    ("verbatim", "E11.9", "ICD10CM"): [concept_row(45552385, "E11.9", "ICD10CM", standard=None)],
    ("mapped", "E11.9", "ICD10CM"): [
        concept_row(201826, "E11.9", "ICD10CM", source_concept_id=45552385, relationship_id="Maps to")
    ],
}


class TestSchemaValidation:
    def test_plain_identifiers_pass(self):
        assert validate_schema_name("cdm_531") == "cdm_531"

    @pytest.mark.parametrize("schema", ["", "cdm; DROP TABLE concept", "cdm.concept", "1cdm"])
    def test_anything_else_is_rejected(self, schema):
        with pytest.raises(ValueError):
            validate_schema_name(schema)


class TestConceptCatalog:
    """Catalog lookups against a fake asyncpg pool."""

    @pytest.mark.asyncio
    async def test_three_modes(self):
        conn = FakeConnection(ROWS)
        catalog = ConceptCatalog(pool=FakePool(conn))

        results = await catalog.map_concepts([concept("44054006", "SNOMED"), concept("E11.9", "ICD10CM")], "cdm")

        assert [c.concept_id for c in results.verbatim] == [201826, 45552385]
        assert [c.concept_id for c in results.standard] == [201826]
        mapped = results.mapped[0]
        assert mapped.concept_id == 201826
        assert mapped.source_concept_id == 45552385
        assert mapped.relationship_id == "Maps to"
        assert mapped.mapping_type == "mapped"
        assert mapped.concept_set_id == DIABETES_OID
        assert mapped.source_vocabulary == "ICD10CM"
        assert results.errors == {}

    @pytest.mark.asyncio
    async def test_modes_can_be_switched_off(self):
        conn = FakeConnection(ROWS)
        catalog = ConceptCatalog(pool=FakePool(conn))

        results = await catalog.map_concepts(
            [concept("44054006", "SNOMED")], "cdm", include_verbatim=False, include_mapped=False
        )

        assert results.verbatim == []
        assert len(results.standard) == 1
        assert {mode for mode, _, _ in conn.calls} == {"standard"}

    @pytest.mark.asyncio
    async def test_queries_use_the_schema_and_bind_parameters(self):
        captured = []

        class CapturingConnection(FakeConnection):
            async def fetch(self, query, code, vocabulary_id):
                captured.append(query)
                return await super().fetch(query, code, vocabulary_id)

        catalog = ConceptCatalog(pool=FakePool(CapturingConnection(ROWS)))

        await catalog.execute_mapped_query([concept("E11.9", "ICD10CM")], "omop_cdm")

        assert "omop_cdm.concept_relationship" in captured[0]
        assert "$1" in captured[0] and "$2" in captured[0]
        assert "E11.9" not in captured[0]

    @pytest.mark.asyncio
    async def test_verbatim_keeps_non_standard_rows(self):
        catalog = ConceptCatalog(pool=FakePool(FakeConnection(ROWS)))
        concepts = [concept("E11.9", "ICD10CM")]

        verbatim = await catalog.execute_verbatim_query(concepts, "cdm")
        standard = await catalog.execute_standard_query(concepts, "cdm")

        assert [c.concept_id for c in verbatim] == [45552385]
        assert verbatim[0].mapping_type == "verbatim"
        assert standard == []

    @pytest.mark.asyncio
    async def test_failing_concept_is_skipped(self):
        conn = FakeConnection(ROWS, failing_codes={"E11.9"})
        catalog = ConceptCatalog(pool=FakePool(conn))

        results = await catalog.map_concepts([concept("E11.9", "ICD10CM"), concept("44054006", "SNOMED")], "cdm")

        assert [c.concept_code for c in results.verbatim] == ["44054006"]
        assert results.errors == {}

    @pytest.mark.asyncio
    async def test_bad_schema_is_recorded_per_mode(self):
        conn = FakeConnection(ROWS)
        catalog = ConceptCatalog(pool=FakePool(conn))

        results = await catalog.map_concepts([concept("44054006", "SNOMED")], "cdm; DROP TABLE x")

        assert set(results.errors) == {"verbatim", "standard", "mapped"}
        assert conn.calls == []

    @pytest.mark.asyncio
    async def test_no_concepts_means_no_queries(self):
        conn = FakeConnection(ROWS)

        results = await ConceptCatalog(pool=FakePool(conn)).map_concepts([], "cdm")

        assert results.all_concepts() == []
        assert conn.calls == []

    @pytest.mark.asyncio
    async def test_lookup_code(self):
        catalog = ConceptCatalog(pool=FakePool(FakeConnection(ROWS)))

        result = await catalog.lookup_code("E11.9", "ICD10CM", "cdm")

        assert result["found"] is True
        assert result["concepts"][0]["concept_id"] == 45552385
        assert result["standardConcepts"] == []
        assert result["mappedConcepts"][0]["concept_id"] == 201826

    @pytest.mark.asyncio
    async def test_close_pool(self):
        pool = FakePool(FakeConnection())
        catalog = ConceptCatalog(pool=pool)

        await catalog.close_pool()

        assert pool.closed is True
        assert catalog.pool is None


class TestOpenCatalog:
    @pytest.mark.asyncio
    async def test_shared_catalog_is_reused(self):
        shared = ConceptCatalog(pool=FakePool(FakeConnection()))

        async with open_catalog(shared, {}) as active:
            assert active is shared

        assert shared.pool is not None

    @pytest.mark.asyncio
    async def test_overrides_get_a_scoped_catalog(self):
        shared = ConceptCatalog(pool=FakePool(FakeConnection()))

        async with open_catalog(shared, {"name": "other_db"}, overridden=True) as active:
            assert active is not shared
            assert active.db_config == {"name": "other_db"}
