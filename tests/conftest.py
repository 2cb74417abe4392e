import asyncpg
import httpx
import pytest

from cql_omop.config.settings import settings

DIABETES_OID = "2.16.840.1.113883.3.464.1003.103.12.1001"
HYPERTENSION_OID = "2.16.840.1.113883.3.464.1003.104.12.1011"

NAMESPACED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ns0:RetrieveMultipleValueSetsResponse xmlns:ns0="urn:ihe:iti:svs:2008">
  <ns0:DescribedValueSet ID="{oid}" displayName="Diabetes" version="20240101">
    <ns0:ConceptList>
      <ns0:Concept code="E11.9" codeSystem="2.16.840.1.113883.6.90" codeSystemName="ICD10CM" codeSystemVersion="2024" displayName="Type 2 diabetes mellitus without complications"/>
      <ns0:Concept code="44054006" codeSystem="2.16.840.1.113883.6.96" codeSystemName="SNOMEDCT" codeSystemVersion="2024-03" displayName="Diabetes mellitus type 2"/>
    </ns0:ConceptList>
    <ns0:Source>NCQA</ns0:Source>
    <ns0:Purpose>(Clinical Focus: patients with diabetes),(Data Element Scope: diagnoses),(Inclusion Criteria: type 1 and type 2),(Exclusion Criteria: gestational diabetes)</ns0:Purpose>
    <ns0:Type>Extensional</ns0:Type>
    <ns0:Status>Active</ns0:Status>
  </ns0:DescribedValueSet>
</ns0:RetrieveMultipleValueSetsResponse>
"""

BARE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<RetrieveMultipleValueSetsResponse>
  <DescribedValueSet ID="{oid}" displayName="Diabetes" version="20240101">
    <ConceptList>
      <Concept code="E11.9" codeSystem="2.16.840.1.113883.6.90" codeSystemName="ICD10CM" codeSystemVersion="2024" displayName="Type 2 diabetes mellitus without complications"/>
      <Concept code="44054006" codeSystem="2.16.840.1.113883.6.96" codeSystemName="SNOMEDCT" codeSystemVersion="2024-03" displayName="Diabetes mellitus type 2"/>
    </ConceptList>
    <Source>NCQA</Source>
    <Purpose>(Clinical Focus: patients with diabetes),(Data Element Scope: diagnoses),(Inclusion Criteria: type 1 and type 2),(Exclusion Criteria: gestational diabetes)</Purpose>
    <Type>Extensional</Type>
    <Status>Active</Status>
  </DescribedValueSet>
</RetrieveMultipleValueSetsResponse>
"""

RETIRED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ns0:RetrieveMultipleValueSetsResponse xmlns:ns0="urn:ihe:iti:svs:2008">
  <ns0:DescribedValueSet ID="{oid}" displayName="Retired Set" version="1">
    <ns0:Status>Retired</ns0:Status>
  </ns0:DescribedValueSet>
</ns0:RetrieveMultipleValueSetsResponse>
"""

NO_VALUESET_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ns0:RetrieveMultipleValueSetsResponse xmlns:ns0="urn:ihe:iti:svs:2008"/>
"""

DIABETES_CQL = f"""library DiabetesScreening version '1.0.0'

using FHIR version '4.0.1'

valueset "Diabetes": 'urn:oid:{DIABETES_OID}'
valueset "Essential Hypertension": 'urn:oid:{HYPERTENSION_OID}'

context Patient

define "Has Diabetes":
  exists [Condition: "Diabetes"]
"""


class RecordingTransport:
    """Wraps a handler in ``httpx.MockTransport`` and keeps every request it saw."""

    def __init__(self, handler):
        self.requests = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request):
        self.requests.append(request)
        return await self._handler(request)

    def ids_requested(self):
        return [request.url.params["id"] for request in self.requests]


def xml_for(oid: str, template: str = NAMESPACED_XML) -> str:
    return template.format(oid=oid)


def vsac_handler(statuses=None, templates=None):
    """Handler answering each OID with a status code or an XML template."""
    statuses = statuses or {}
    templates = templates or {}

    async def handler(request: httpx.Request) -> httpx.Response:
        oid = request.url.params["id"]
        status = statuses.get(oid, 200)
        if status != 200:
            return httpx.Response(status, text="error")
        return httpx.Response(200, text=xml_for(oid, templates.get(oid, NAMESPACED_XML)))

    return handler


class FakeConnection:
    """
    Stand-in for an asyncpg connection. Rows are keyed by
    (mode, concept_code, vocabulary_id) where mode is read off the query text.
    """

    def __init__(self, rows=None, failing_codes=()):
        self.rows = rows or {}
        self.failing_codes = set(failing_codes)
        self.calls = []

    async def fetch(self, query, code, vocabulary_id):
        if "Maps to" in query:
            mode = "mapped"
        elif "standard_concept = 'S'" in query:
            mode = "standard"
        else:
            mode = "verbatim"
        self.calls.append((mode, code, vocabulary_id))

        if code in self.failing_codes:
            raise asyncpg.exceptions.UndefinedTableError("relation does not exist")
        return self.rows.get((mode, code, vocabulary_id), [])


class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.closed = False

    def acquire(self):
        return _Acquire(self.conn)

    async def close(self):
        self.closed = True


def concept_row(concept_id, code, vocabulary_id, domain_id="Condition", standard="S", **extra):
    return {
        "concept_id": concept_id,
        "concept_code": code,
        "vocabulary_id": vocabulary_id,
        "domain_id": domain_id,
        "concept_class_id": "Clinical Finding",
        "concept_name": f"Concept {code}",
        "standard_concept": standard,
        **extra
    }


@pytest.fixture
def vsac_credentials(monkeypatch):
    monkeypatch.setattr(settings, "vsac_username", "env-user")
    monkeypatch.setattr(settings, "vsac_password", "env-secret-password")
    return "env-user", "env-secret-password"


@pytest.fixture
def no_vsac_credentials(monkeypatch):
    monkeypatch.setattr(settings, "vsac_username", None)
    monkeypatch.setattr(settings, "vsac_password", None)


@pytest.fixture
def database_password(monkeypatch):
    monkeypatch.setattr(settings, "database_password", "db-secret-password")
    monkeypatch.setattr(settings, "omop_database_schema", "cdm")
    return "db-secret-password"


@pytest.fixture
def no_database_password(monkeypatch):
    monkeypatch.setattr(settings, "database_password", None)
