"""
Response Validator - checks the model's final text against the result contract.

The body sent to the caller is the model's text itself, never a
re-serialization, so the check only decides *whether* the text may be
emitted. A single surrounding Markdown code fence is tolerated and removed.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Type

from pydantic import BaseModel, ValidationError

from ..errors import MalformedOutputError
from ..models import ChartResult, FailureResult, OutputMode, TableResult

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n(?P<body>.*?)\n?\s*```\s*$", re.DOTALL)

_SUCCESS_SCHEMAS: Dict[OutputMode, Type[BaseModel]] = {
    OutputMode.TABLE: TableResult,
    OutputMode.CHART: ChartResult,
}


class ResponseValidator:
    """Validate final model text for a given output mode."""

    def validate(self, text: str, mode: OutputMode) -> str:
        """Return the text to emit, or raise MalformedOutputError."""
        try:
            self.check(text, mode)
            return text
        except MalformedOutputError as first_error:
            match = _FENCE_RE.match(text or "")
            if not match:
                raise
            body = match.group("body").strip()
            try:
                self.check(body, mode)
            except MalformedOutputError:
                raise first_error
            return body

    def check(self, text: str, mode: OutputMode) -> BaseModel:
        """Parse and shape-check `text`; returns the parsed payload model."""
        if not text or not text.strip():
            raise MalformedOutputError("model returned no text", text or "")

        try:
            payload: Any = json.loads(text)
        except ValueError as exc:
            raise MalformedOutputError(f"not valid JSON: {exc}", text) from exc

        if not isinstance(payload, dict):
            raise MalformedOutputError(f"expected a JSON object, got {type(payload).__name__}", text)

        schema = FailureResult if payload.get("success") is False else _SUCCESS_SCHEMAS[OutputMode(mode)]
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            raise MalformedOutputError(
                f"does not match {schema.__name__}: {exc.error_count()} error(s)", text
            ) from exc
