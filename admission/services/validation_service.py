"""Schema validation of request bodies and query parameters."""

import logging
from dataclasses import dataclass
from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.requests import Request

from admission.models.response import ErrorCode

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

INVALID_JSON = "Invalid JSON in request body"


@dataclass
class ValidationResult(Generic[M]):
    """Either validated data or a structured failure."""

    success: bool
    data: Optional[M] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None


def format_errors(error: ValidationError) -> str:
    """Render every violated field as ``loc: msg`` in schema order."""
    parts = []
    for issue in error.errors(include_url=False):
        location = ".".join(str(part) for part in issue["loc"]) or "body"
        parts.append(f"{location}: {issue['msg']}")
    return ", ".join(parts)


class ValidationService:
    """Applies pydantic schemas to parsed request data."""

    @staticmethod
    def validate(schema: Type[M], data: Any) -> ValidationResult[M]:
        try:
            return ValidationResult(success=True, data=schema.model_validate(data))
        except ValidationError as e:
            return ValidationResult(
                success=False, error=format_errors(e), code=ErrorCode.VALIDATION_ERROR
            )

    @staticmethod
    async def validate_body(request: Request, schema: Type[M]) -> ValidationResult[M]:
        """Parse a JSON body and validate it.

        Non-JSON content types are INVALID_INPUT; unparseable JSON and
        schema violations are VALIDATION_ERROR with different details.
        """
        content_type = request.headers.get("content-type", "")
        if content_type and "json" not in content_type.lower():
            return ValidationResult(
                success=False,
                error=f"Unsupported content type '{content_type}'; expected application/json",
                code=ErrorCode.INVALID_INPUT,
            )

        raw = await request.body()
        if not raw:
            return ValidationService.validate(schema, {})
        try:
            return ValidationResult(success=True, data=schema.model_validate_json(raw))
        except ValidationError as e:
            # covers malformed bytes and nesting past the parser depth limit
            if any(issue["type"] == "json_invalid" for issue in e.errors(include_url=False)):
                logger.debug("Rejected unparseable request body")
                return ValidationResult(
                    success=False, error=INVALID_JSON, code=ErrorCode.VALIDATION_ERROR
                )
            return ValidationResult(
                success=False, error=format_errors(e), code=ErrorCode.VALIDATION_ERROR
            )

    @staticmethod
    def validate_query(request: Request, schema: Type[M]) -> ValidationResult[M]:
        return ValidationService.validate(schema, dict(request.query_params))
