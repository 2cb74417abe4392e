from cql_omop.utils.extractors import (
    extract_valueset_identifiers_from_cql,
    extract_individual_codes_from_cql,
    validate_extracted_oids,
    partition_oids,
    map_vsac_to_omop_vocabulary
)
from cql_omop.utils.helpers import format_list_with_double_quotes, preview

from conftest import DIABETES_CQL, DIABETES_OID, HYPERTENSION_OID


class TestValueSetExtraction:
    """OID extraction from valueset declarations."""

    def test_extracts_oids_and_names_in_source_order(self):
        result = extract_valueset_identifiers_from_cql(DIABETES_CQL)

        assert result.oids == [DIABETES_OID, HYPERTENSION_OID]
        assert [vs.name for vs in result.valuesets] == ["Diabetes", "Essential Hypertension"]
        assert result.name_for(HYPERTENSION_OID) == "Essential Hypertension"

    def test_double_quoted_references_are_not_matched(self):
        cql = 'valueset "Diabetes": "urn:oid:2.16.840.1.113883.3.464.1003.103.12.1001"'

        result = extract_valueset_identifiers_from_cql(cql)

        assert result.oids == []
        assert result.valuesets == []

    def test_repeated_oid_is_listed_once_but_every_declaration_kept(self):
        cql = (
            "valueset \"Diabetes\": 'urn:oid:1.2.3.4'\n"
            "valueset \"Diabetes Again\": 'urn:oid:1.2.3.4'\n"
        )

        result = extract_valueset_identifiers_from_cql(cql)

        assert result.oids == ["1.2.3.4"]
        assert len(result.valuesets) == 2
        assert result.find_by_oid("1.2.3.4").name == "Diabetes"

    def test_names_are_whitespace_stripped(self):
        result = extract_valueset_identifiers_from_cql("valueset \" Diabetes \": 'urn:oid:1.2.3'")

        assert result.valuesets[0].name == "Diabetes"

    def test_keyword_is_case_insensitive(self):
        result = extract_valueset_identifiers_from_cql("VALUESET \"Diabetes\": 'urn:oid:1.2.3'")

        assert result.oids == ["1.2.3"]

    def test_non_string_and_empty_input_give_empty_result(self):
        for value in (None, "", 42, ["valueset"]):
            result = extract_valueset_identifiers_from_cql(value)
            assert result.oids == []
            assert result.valuesets == []

    def test_unknown_oid_name_falls_back_to_default(self):
        result = extract_valueset_identifiers_from_cql(DIABETES_CQL)

        assert result.name_for("9.9.9", default="Unknown_9.9.9") == "Unknown_9.9.9"


class TestOidValidation:
    def test_only_dotted_numeric_oids_survive(self):
        assert validate_extracted_oids(["1.2.3", "42", "a.b.c"]) == ["1.2.3"]

    def test_partition_keeps_rejected_values(self):
        result = partition_oids(["1.2.3", "1..2", 7, "2.16.840.1"])

        assert result.valid == ["1.2.3", "2.16.840.1"]
        assert result.invalid == ["1..2", 7]

    def test_non_list_input_is_empty(self):
        assert validate_extracted_oids("1.2.3") == []
        assert validate_extracted_oids(None) == []


class TestIndividualCodes:
    def test_code_declarations_are_extracted(self):
        cql = (
            "code \"Systolic blood pressure\": '8480-6' from \"LOINC\"\n"
            "code \"Hypertension\": '38341003' from \"SNOMEDCT\"\n"
        )

        result = extract_individual_codes_from_cql(cql)

        assert result["count"] == 2
        assert result["codes"][0] == {"name": "Systolic blood pressure", "code": "8480-6", "system": "LOINC"}
        assert result["codes"][1]["system"] == "SNOMEDCT"

    def test_no_codes(self):
        assert extract_individual_codes_from_cql(DIABETES_CQL) == {"codes": [], "count": 0}


class TestVocabularyTable:
    def test_known_names_map_to_omop_vocabularies(self):
        assert map_vsac_to_omop_vocabulary("SNOMEDCT") == "SNOMED"
        assert map_vsac_to_omop_vocabulary("CPT") == "CPT4"
        assert map_vsac_to_omop_vocabulary("ICD-10-CM") == "ICD10CM"

    def test_unknown_names_pass_through(self):
        assert map_vsac_to_omop_vocabulary("LocalCodes") == "LocalCodes"


class TestHelpers:
    def test_format_list_with_double_quotes(self):
        assert format_list_with_double_quotes(["1.2.3", "4.5"]) == '["1.2.3", "4.5"]'

    def test_preview_truncates(self):
        assert preview("abc", 10) == "abc"
        assert preview("abcdef", 3) == "abc... [truncated 3 characters]"
        assert preview(None) == ""
