"""
LLM Response Validation Module

Turns free text from the AI Planning Service into typed payloads:
- JSON extraction (fenced code blocks, or the outermost object/array)
- Schema validation with pydantic models

Validation fails closed: empty text, text without JSON, or JSON missing a
required field raises ResponseValidationError. There is no best-effort
partial result.
"""

import re
import json
from typing import Any, List, Type, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as SchemaError

from .logging import get_logger
from .metrics import metrics

logger = get_logger("validation")

ModelT = TypeVar("ModelT", bound=BaseModel)


class ResponseValidationError(Exception):
    """The AI response could not be parsed into the expected schema."""

    def __init__(self, message: str, issues: List[str] = None):
        super().__init__(message)
        self.issues = issues or []


def parse_json_payload(text: str) -> Any:
    """
    Extract and parse JSON from LLM response text.

    Raises:
        json.JSONDecodeError: if no JSON document can be found
    """
    # Try to find JSON in code blocks
    json_match = re.search(r'```(?:json)?\s*(.*?)\s*```', text, re.DOTALL)
    if json_match:
        return json.loads(json_match.group(1))

    # Try to find a raw object or array, whichever opens first
    starts = [i for i in (text.find('{'), text.find('[')) if i >= 0]
    if starts:
        start = min(starts)
        closer = '}' if text[start] == '{' else ']'
        end = text.rfind(closer) + 1
        if end > start:
            return json.loads(text[start:end])

    raise json.JSONDecodeError("No JSON found", text, 0)


class LLMResponseValidator:
    """
    Validator for AI Planning Service outputs.

    Example:
        validator = LLMResponseValidator("plan_generation")
        payload = validator.parse(text, PlanPayload)
    """

    def __init__(self, purpose: str):
        self.purpose = purpose

    def parse(self, text: str, model: Type[ModelT]) -> ModelT:
        """Parse ``text`` into an instance of ``model``."""
        data = self._load(text)
        try:
            result = model.model_validate(data)
        except SchemaError as e:
            self._reject("schema_mismatch", [self._describe(err) for err in e.errors()])
        metrics.record_response_validation(self.purpose, True)
        return result

    def parse_list(self, text: str, model: Type[ModelT]) -> List[ModelT]:
        """Parse ``text`` into a list of ``model`` instances."""
        data = self._load(text)
        try:
            result = TypeAdapter(List[model]).validate_python(data)
        except SchemaError as e:
            self._reject("schema_mismatch", [self._describe(err) for err in e.errors()])
        metrics.record_response_validation(self.purpose, True)
        return result

    def _load(self, text: str) -> Any:
        if not text or not text.strip():
            self._reject("empty_response", ["AI response was empty"])
        try:
            return parse_json_payload(text)
        except json.JSONDecodeError as e:
            self._reject("invalid_json", [f"Failed to parse JSON: {e}"])

    def _reject(self, reason: str, issues: List[str]):
        metrics.record_response_validation(self.purpose, False)
        logger.warning(
            "validation_failed",
            purpose=self.purpose,
            reason=reason,
            errors=issues[:10],
        )
        raise ResponseValidationError(f"{reason}: " + "; ".join(issues[:5]), issues)

    @staticmethod
    def _describe(error: dict) -> str:
        location = ".".join(str(part) for part in error.get("loc", ())) or "_root"
        return f"{location}: {error.get('msg', 'invalid')}"
