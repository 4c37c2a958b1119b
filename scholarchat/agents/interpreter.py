from __future__ import annotations

import time
from typing import Any

import openai
from loguru import logger
from pydantic import ValidationError

from scholarchat.config import settings
from scholarchat.errors import InterpretationError
from scholarchat.llm_client import client as llm_client, get_model
from scholarchat.models.query import StructuredQuery
from scholarchat.services import logger as log_service
from scholarchat.services.prompt_store import render_prompt


class QueryInterpreter:
    """Turns free text into a catalog request with one structured completion call."""

    name: str = "interpreter"

    def __init__(self, model: str | None = None, base_url: str | None = None):
        override = settings.interpreter_model.strip()
        self.model = model or override or get_model()
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        self.client: Any = None

    @property
    def system_prompt(self) -> str:
        return render_prompt("interpreter.system_prompt", base_url=self.base_url)

    async def interpret(self, text: str) -> StructuredQuery:
        t0 = time.monotonic()
        try:
            active_client = self.client or llm_client()
            completion = await active_client.chat.completions.parse(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": text},
                ],
                response_format=StructuredQuery,
            )
        except ValidationError as exc:
            self._log_failure(t0, exc)
            raise InterpretationError("Structured query did not match the expected schema") from exc
        except openai.OpenAIError as exc:
            self._log_failure(t0, exc)
            raise InterpretationError("Query interpretation call failed") from exc

        self._log_success(t0, completion)
        message = completion.choices[0].message
        parsed = getattr(message, "parsed", None)
        if parsed is None:
            refusal = getattr(message, "refusal", None)
            raise InterpretationError(refusal or "Model returned no structured query")
        return self._normalize(parsed)

    def _normalize(self, query: StructuredQuery) -> StructuredQuery:
        request_url = (query.request_url or "").strip() or None
        if request_url is None:
            return query.model_copy(update={"request_url": None})
        if not request_url.startswith(self.base_url):
            logger.warning(f"Rejected request URL outside the catalog: {request_url}")
            raise InterpretationError("Structured query pointed outside the works catalog")
        return query.model_copy(update={"request_url": request_url, "explanation": None})

    def _log_success(self, t0: float, completion: Any) -> None:
        usage = getattr(completion, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

    def _log_failure(self, t0: float, exc: Exception) -> None:
        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            duration_ms=int((time.monotonic() - t0) * 1000),
            status="error",
            error=str(exc),
        )
