import json
import logging
from typing import Dict, Iterable, Optional

from cql_omop.services.json_utils import parse_llm_json
from cql_omop.services.llm_services import LLMService, LLMError, get_llm_service
from cql_omop.utils.extractors import VSAC_TO_OMOP_VOCABULARY, map_vsac_to_omop_vocabulary

logger = logging.getLogger(__name__)

VOCABULARY_MAPPING_PROMPT = """You are an expert in clinical terminologies and the OMOP Common Data Model.
Map the following VSAC codeSystemNames to OMOP vocabulary_id values.

Common mappings:
{known_mappings}

Return a JSON object mapping VSAC codeSystemName to OMOP vocabulary_id.
If no mapping exists, use the original name."""


class VocabularyMapper:
    """
    Maps VSAC code system names to OMOP ``vocabulary_id`` values.

    Names in the built-in table never reach the LLM. Unknown names are sent
    to the LLM when ``use_llm`` is set; anything the LLM cannot answer falls
    back to the name itself.
    """

    def __init__(self, llm_service: Optional[LLMService] = None, use_llm: bool = True):
        self._llm_service = llm_service
        self.use_llm = use_llm

    @property
    def llm_service(self) -> LLMService:
        if self._llm_service is None:
            self._llm_service = get_llm_service()
        return self._llm_service

    async def map_code_systems(self, code_system_names: Iterable[str]) -> Dict[str, str]:
        names = list(dict.fromkeys(n for n in code_system_names if n))
        mapping = {name: VSAC_TO_OMOP_VOCABULARY[name] for name in names if name in VSAC_TO_OMOP_VOCABULARY}
        unknown = [name for name in names if name not in mapping]

        if unknown and self.use_llm:
            mapping.update(await self._ask_llm(unknown))

        for name in unknown:
            mapping.setdefault(name, map_vsac_to_omop_vocabulary(name))

        return mapping

    async def _ask_llm(self, code_system_names) -> Dict[str, str]:
        known = "\n".join(f'- "{k}" -> "{v}"' for k, v in VSAC_TO_OMOP_VOCABULARY.items())
        messages = [
            {"role": "system", "content": VOCABULARY_MAPPING_PROMPT.format(known_mappings=known)},
            {"role": "user", "content": f"VSAC codeSystemNames: {json.dumps(code_system_names)}"}
        ]

        try:
            response = await self.llm_service.create_completion(messages, temperature=0)
        except LLMError as error:
            logger.error(f"LLM vocabulary mapping failed: {error}")
            return {}

        parsed = parse_llm_json(response.get("content", ""))
        if not isinstance(parsed, dict):
            logger.warning("LLM vocabulary mapping reply was not a JSON object, using names as-is")
            return {}

        return {
            name: str(parsed[name])
            for name in code_system_names
            if isinstance(parsed.get(name), str) and parsed[name].strip()
        }
