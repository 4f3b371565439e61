import base64
from typing import Optional, Sequence

import httpx

from common.states import Provider
from services.scanner.extraction.base import ExtractionClient, ModelReply, token_cost
from services.scanner.extraction.prompts import SYSTEM_PROMPT, build_user_prompt

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeExtractionClient(ExtractionClient):
    """Sends the (page-subset) PDF itself as a document block."""

    provider = Provider.CLAUDE
    needs_images = False

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        input_cost_per_1k: float = 0.003,
        output_cost_per_1k: float = 0.015,
        http_client: Optional[httpx.Client] = None,
        api_url: str = ANTHROPIC_API_URL,
    ):
        super().__init__(api_key, model, max_tokens, http_client)
        self.input_cost_per_1k = input_cost_per_1k
        self.output_cost_per_1k = output_cost_per_1k
        self.api_url = api_url

    def _send(self, document, page_numbers: Sequence[int], page_count: int) -> ModelReply:
        if not isinstance(document, (bytes, bytearray)):
            raise TypeError("Claude extraction expects PDF bytes")

        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "document",
                            "source": {
                                "type": "base64",
                                "media_type": "application/pdf",
                                "data": base64.b64encode(document).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": build_user_prompt(page_numbers, page_count)},
                    ],
                }
            ],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        payload = self._post(self.api_url, headers, body)

        text = "".join(
            block.get("text", "") for block in payload.get("content") or [] if block.get("type") == "text"
        )
        usage = payload.get("usage") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)

        return ModelReply(
            text=text,
            cost_usd=token_cost(input_tokens, output_tokens, self.input_cost_per_1k, self.output_cost_per_1k),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
