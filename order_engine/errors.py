"""
Error taxonomy for the order engine.

Every failure a caller is expected to react to is an OrderEngineError
carrying a machine-readable code, an HTTP-style status and optional
structured details. Anything else escaping the engine is unexpected.
"""
import json
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


class OrderEngineError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return {"error": payload}


class ValidationError(OrderEngineError):
    """Bad input, illegal state transition, insufficient stock or a size limit."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(OrderEngineError):
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} with ID {identifier} not found" if identifier else f"{resource} not found"
        super().__init__(message, code=f"{resource.upper().replace(' ', '_')}_NOT_FOUND")
        self.resource = resource
        self.identifier = identifier


class ConflictError(OrderEngineError):
    code = "CONFLICT"
    status_code = 409


def parse_request(model_cls: Type[BaseModel], data: Any):
    """Validates raw input into `model_cls`, converting pydantic failures into ValidationError."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        # exc.json() knows how to serialize the ctx payloads errors() may carry
        errors = json.loads(exc.json(include_url=False))
        raise ValidationError(f"Invalid {model_cls.__name__}", details={"errors": errors}) from exc
