from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId

from loan_channel.core.exceptions import NotFoundError


def as_object_id(value: Any, label: str = "Record") -> PydanticObjectId:
    """Coerce a path/body id into an ObjectId. Malformed ids read as missing records."""
    if isinstance(value, PydanticObjectId):
        return value
    try:
        return PydanticObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{label} {value} not found")
