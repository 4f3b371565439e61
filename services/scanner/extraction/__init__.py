from typing import Optional

import httpx

from common.config import Settings
from common.states import Provider
from services.scanner.extraction.base import ExtractionClient
from services.scanner.extraction.claude import ClaudeExtractionClient
from services.scanner.extraction.openai_vision import OpenAIExtractionClient


def create_client(settings: Settings, http_client: Optional[httpx.Client] = None) -> ExtractionClient:
    if settings.provider is Provider.CLAUDE:
        return ClaudeExtractionClient(
            api_key=settings.anthropic_api_key,
            model=settings.claude_model,
            max_tokens=settings.max_output_tokens,
            input_cost_per_1k=settings.claude_input_cost_per_1k,
            output_cost_per_1k=settings.claude_output_cost_per_1k,
            http_client=http_client,
        )
    return OpenAIExtractionClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        max_tokens=settings.max_output_tokens,
        cost_per_1k=settings.openai_cost_per_1k,
        http_client=http_client,
    )


__all__ = ["ExtractionClient", "ClaudeExtractionClient", "OpenAIExtractionClient", "create_client"]
