"""
Input model coercion for service entry points.

Services accept either a pydantic model or a plain mapping; validation
failures surface as the domain ValidationError so callers only ever handle
the booking core's error taxonomy.
"""

from typing import Any, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.exceptions import ValidationError

ModelT = TypeVar('ModelT', bound=BaseModel)


def coerce_model(
    model_cls: Type[ModelT],
    data: Union[ModelT, Mapping[str, Any], None],
) -> ModelT:
    """
    Validate data into model_cls.

    None yields the model's defaults.

    Raises:
        ValidationError: If the data does not satisfy the model
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(dict(data or {}))
    except PydanticValidationError as e:
        raise ValidationError(_format_errors(e)) from e


def _format_errors(error: PydanticValidationError) -> str:
    messages = []
    for item in error.errors():
        location: Optional[str] = ".".join(str(part) for part in item.get("loc", ())) or None
        message = item.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)
