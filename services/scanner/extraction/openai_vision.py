import base64
from typing import Optional, Sequence

import httpx
from openai import OpenAI

from common.states import Provider
from services.scanner.extraction.base import ExtractionClient, ModelReply, total_token_cost
from services.scanner.extraction.prompts import SYSTEM_PROMPT, build_user_prompt, page_label

OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAIExtractionClient(ExtractionClient):
    """Sends one rendered PNG per page; billed on total tokens."""

    provider = Provider.OPENAI
    needs_images = True

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        cost_per_1k: float = 0.01,
        http_client: Optional[httpx.Client] = None,
        base_url: str = OPENAI_BASE_URL,
    ):
        super().__init__(api_key, model, max_tokens, http_client)
        self.cost_per_1k = cost_per_1k
        # retries are owned by the worker's timeout/retry policy
        self._openai = OpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            http_client=self._http,
        )

    def _send(self, document, page_numbers: Sequence[int], page_count: int) -> ModelReply:
        if not isinstance(document, list):
            raise TypeError("OpenAI extraction expects a list of PNG page images")
        if len(document) != len(page_numbers):
            raise ValueError(f"Got {len(document)} images for {len(page_numbers)} pages")

        content = [{"type": "text", "text": build_user_prompt(page_numbers, page_count)}]
        for number, image in zip(page_numbers, document):
            content.append({"type": "text", "text": page_label(number, page_count)})
            content.append(
                {
                    "type": "image_url",
                    "image_url": {
                        "url": "data:image/png;base64," + base64.b64encode(image).decode("ascii"),
                        "detail": "high",
                    },
                }
            )

        response = self._openai.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
        )

        text = response.choices[0].message.content if response.choices else ""
        usage = response.usage
        total_tokens = usage.total_tokens if usage else 0

        return ModelReply(
            text=text or "",
            cost_usd=total_token_cost(total_tokens, self.cost_per_1k),
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
        )
