"""Shared schema plumbing — camelCase JSON and the response envelope.

Every endpoint answers with the same envelope so the mobile client can
handle responses uniformly:

    success: {statusCode, data, message, success: true}
    failure: {statusCode, message, errors: [...], success: false}
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire. Accepts either on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ApiResponse(CamelModel, Generic[T]):
    status_code: int = 200
    data: T
    message: str = "Success"
    success: bool = True


class ApiError(CamelModel):
    status_code: int
    message: str
    errors: list[Any] = Field(default_factory=list)
    success: bool = False
