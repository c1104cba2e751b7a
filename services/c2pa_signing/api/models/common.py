"""Common Pydantic models used across the API."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class SigningBaseModel(BaseModel):
    """Base model for request bodies. Surrounding whitespace is stripped."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class SigningResponseModel(BaseModel):
    """Base model for response bodies.

    Strings are returned as given so PEM fields keep their trailing newline.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ErrorResponse(SigningResponseModel):
    """Error body returned by every non-2xx response."""

    detail: str


def error_responses(*status_codes: int) -> dict[int | str, dict[str, Any]]:
    """OpenAPI ``responses`` entries documenting ErrorResponse for each status code."""
    return {code: {"model": ErrorResponse} for code in status_codes}
