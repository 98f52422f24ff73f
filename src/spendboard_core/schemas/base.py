"""Shared pydantic base model."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model with snake_case attributes serialised as camelCase for the dashboard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
