"""Base schemas and common types for the appeals API."""

from pydantic import BaseModel, ConfigDict


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class AppealBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(AppealBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(AppealBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
