"""
Base schemas and mixins for all models.

BaseSchema is for internal/service models; ApiSchema adds the camelCase wire
format used by the correlation endpoints.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """
    Base for all schemas.

    Features:
        - Auto-trim whitespace from strings
        - Validate on attribute assignment
        - Allow ORM objects (from_attributes)
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )


class ApiSchema(BaseSchema):
    """
    Base for request/response bodies.

    Accepts camelCase or snake_case keys; FastAPI serializes by alias, so
    responses go out camelCase.
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True
    )
