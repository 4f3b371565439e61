"""
Shared plumbing for the multimodal extraction providers.

A client never raises out of extract(): every failure (transport, HTTP
status, empty or malformed reply, schema mismatch) comes back as an
ExtractionResult with success=False so the processor can treat all
providers the same way.
"""
import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from common.errors import EmptyResponseError, ResponseFormatError
from common.logs import log_debug, log_event
from common.states import Provider
from services.scanner.models import ExtractionResult, MappingSheetExtraction

DEFAULT_HTTP_TIMEOUT = 180.0

Document = Union[bytes, List[bytes]]

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    trimmed = text.strip()
    match = _FENCE.match(trimmed)
    return match.group(1).strip() if match else trimmed


def parse_json_response(text: Optional[str]) -> dict:
    trimmed = strip_code_fence(text or "")
    if not trimmed:
        raise EmptyResponseError("Model returned an empty response")

    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError as e:
        raise ResponseFormatError(f"Model returned malformed JSON: {e}") from e

    if not isinstance(data, dict):
        raise ResponseFormatError(f"Model returned JSON {type(data).__name__}, expected an object")
    return data


def token_cost(input_tokens: int, output_tokens: int, input_rate_per_1k: float, output_rate_per_1k: float) -> float:
    return input_tokens / 1000 * input_rate_per_1k + output_tokens / 1000 * output_rate_per_1k


def total_token_cost(total_tokens: int, rate_per_1k: float) -> float:
    return total_tokens / 1000 * rate_per_1k


@dataclass
class ModelReply:
    text: str
    cost_usd: float
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class ExtractionClient(ABC):
    provider: Provider
    needs_images = False

    def __init__(self, api_key: str, model: str, max_tokens: int, http_client: Optional[httpx.Client] = None):
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._http = http_client or httpx.Client(timeout=DEFAULT_HTTP_TIMEOUT)

    def close(self):
        self._http.close()

    @abstractmethod
    def _send(self, document: Document, page_numbers: Sequence[int], page_count: int) -> ModelReply:
        ...

    def _post(self, url: str, headers: dict, body: dict) -> dict:
        response = self._http.post(url, headers=headers, json=body)
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"{self.provider.value} API returned HTTP {response.status_code}: {response.text[:500]}",
                request=response.request,
                response=response,
            )
        return response.json()

    def extract(
        self,
        document: Document,
        page_numbers: Optional[Sequence[int]] = None,
        page_count: Optional[int] = None,
    ) -> ExtractionResult:
        started = time.monotonic()
        if page_numbers is None:
            sent = len(document) if isinstance(document, list) else 1
            page_numbers = list(range(1, sent + 1))
        page_count = page_count or len(page_numbers)

        def elapsed_ms():
            return int((time.monotonic() - started) * 1000)

        try:
            reply = self._send(document, page_numbers, page_count)
            log_debug(
                "extraction_reply",
                provider=self.provider.value,
                model=self.model,
                chars=len(reply.text or ""),
                input_tokens=reply.input_tokens,
                output_tokens=reply.output_tokens,
            )
            data = parse_json_response(reply.text)
            extraction = MappingSheetExtraction.model_validate(data)
        except ValidationError as e:
            return self._failure(f"Extraction does not match schema: {e.errors(include_url=False)}", elapsed_ms(), page_numbers)
        except Exception as e:
            return self._failure(str(e) or type(e).__name__, elapsed_ms(), page_numbers)

        return ExtractionResult(
            success=True,
            provider=self.provider.value,
            extracted_data=extraction,
            cost_usd=reply.cost_usd,
            processing_time_ms=elapsed_ms(),
            input_tokens=reply.input_tokens,
            output_tokens=reply.output_tokens,
            images_processed=len(page_numbers),
        )

    def _failure(self, message: str, processing_time_ms: int, page_numbers: Sequence[int]) -> ExtractionResult:
        log_event("extraction_failed", level="warning", provider=self.provider.value, error=message)
        return ExtractionResult(
            success=False,
            provider=self.provider.value,
            cost_usd=0.0,
            processing_time_ms=processing_time_ms,
            images_processed=len(page_numbers),
            error=message,
        )
