import logging
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CustomBaseModel(BaseModel):
    """Custom base model for response schemas.
    - coerce simple-typed fields (int, float, str, bool) before validation
    - fall back to the field default when a value cannot be coerced
    """

    def __init__(self, **data: Any) -> None:
        fields = self.__class__.model_fields
        for attr, value in data.items():
            field = fields.get(attr)
            if field is None or field.annotation not in (int, float, str, bool):
                continue
            try:
                data[attr] = field.annotation(value)
            except (TypeError, ValueError):
                logger.warning("invalid value for %s.%s, using default", self.__class__.__name__, attr)
                data[attr] = field.get_default(call_default_factory=True)
        super().__init__(**data)

    @classmethod
    def from_record(cls, record: Any):
        if isinstance(record, dict):
            return cls(**record)
        if hasattr(record, "__dataclass_fields__"):
            return cls(**{name: getattr(record, name) for name in record.__dataclass_fields__})
        raise ValueError(f"Invalid record type: {type(record)}")
