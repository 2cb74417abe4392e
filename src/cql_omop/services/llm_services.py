import logging
from typing import List, Dict, Any, Optional
import openai
import anthropic
from cql_omop.config.settings import settings

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "azure-openai", "anthropic")


class LLMError(Exception):
    """Raised when the configured provider fails to produce a completion."""


class LLMService:
    def __init__(self, provider: Optional[str] = None):
        self.provider = provider or settings.llm_provider
        logger.info(f"Initializing LLM Service with provider: {self.provider}")

        if self.provider == "openai":
            self.client = openai.AsyncOpenAI(api_key=settings.openai_api_key)
        elif self.provider == "azure-openai":
            self.client = openai.AsyncOpenAI(
                api_key=settings.azure_openai_api_key,
                base_url=f"{settings.azure_openai_endpoint}openai/deployments/{settings.azure_openai_model}",
                default_query={"api-version": settings.azure_openai_api_version},
                default_headers={"api-key": settings.azure_openai_api_key}
            )
        elif self.provider == "anthropic":
            self.client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        else:
            raise ValueError(f"Unsupported LLM provider: {self.provider}. Use one of: {', '.join(SUPPORTED_PROVIDERS)}")

    async def create_completion(
        self,
        messages: List[Dict[str, str]],
        **options
    ) -> Dict[str, Any]:
        """
        Create a completion using the configured LLM provider.

        Returns:
            Dict with ``content`` (stripped text), ``usage`` and ``provider``
        """
        logger.info(f"Creating completion with provider: {self.provider}")

        if self.provider in ("openai", "azure-openai"):
            return await self._create_openai_completion(messages, **options)
        return await self._create_anthropic_completion(messages, **options)

    async def _create_openai_completion(
        self,
        messages: List[Dict[str, str]],
        **options
    ) -> Dict[str, Any]:
        """Create OpenAI completion."""
        model = options.pop("model", None) or (
            settings.azure_openai_model if self.provider == "azure-openai"
            else settings.openai_model
        )
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                **options
            )
        except openai.OpenAIError as error:
            logger.error(f"{self.provider} API error: {error}")
            raise LLMError(f"{self.provider} API error: {error}") from error

        return {
            "content": (response.choices[0].message.content or "").strip(),
            "usage": response.usage.model_dump() if response.usage else None,
            "provider": self.provider
        }

    async def _create_anthropic_completion(
        self,
        messages: List[Dict[str, str]],
        **options
    ) -> Dict[str, Any]:
        """Create Anthropic completion."""
        system_message = next((msg for msg in messages if msg["role"] == "system"), None)
        user_messages = [msg for msg in messages if msg["role"] != "system"]

        request = {
            "model": options.get("model", settings.anthropic_model),
            "max_tokens": options.get("max_tokens", 4096),
            "temperature": options.get("temperature", 0.7),
            "messages": [
                {
                    "role": "user" if msg["role"] == "user" else "assistant",
                    "content": msg["content"]
                }
                for msg in user_messages
            ]
        }
        if system_message:
            request["system"] = system_message["content"]

        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIError as error:
            logger.error(f"Anthropic API error: {error}")
            raise LLMError(f"Anthropic API error: {error}") from error

        return {
            "content": response.content[0].text.strip(),
            "usage": {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens
            },
            "provider": "anthropic"
        }


_llm_service: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    """Shared LLM service, created on first use so that importing never needs API keys."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
