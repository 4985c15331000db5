"""Base model for JSON payloads exchanged with the recording store."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Pydantic model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, object]:
        """Return a JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)
