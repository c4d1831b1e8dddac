from typing import Any, Dict, Iterable, List, Optional

from beanie import Document
from beanie.odm.fields import PydanticObjectId

from loan_channel.database.models.target_model import Target
from loan_channel.schemas.event_schema import ApplicationEvent


def convert_objectid(obj):
    """Convert PydanticObjectId fields to strings."""
    if isinstance(obj, dict):
        return {key: convert_objectid(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [convert_objectid(item) for item in obj]
    elif isinstance(obj, PydanticObjectId):
        return str(obj)
    return obj


def serialize_document(document: Document) -> Dict[str, Any]:
    data = document.model_dump(exclude={"revision_id"})
    return convert_objectid(data)


def serialize_documents(documents: Iterable[Document]) -> List[Dict[str, Any]]:
    return [serialize_document(document) for document in documents]


def build_targets_response(targets: List[Target], message: str) -> Dict[str, Any]:
    return {
        "message": message,
        "count": len(targets),
        "targets": serialize_documents(targets),
    }


def build_application_response(application, event: Optional[ApplicationEvent] = None,
                               message: Optional[str] = None) -> Dict[str, Any]:
    response = {
        "message": message,
        "application": serialize_document(application),
        "event": convert_objectid(event.model_dump()) if event else None,
    }
    # Clean up any None values for cleaner response
    return {k: v for k, v in response.items() if v is not None}


def build_hierarchy_response(change, message: str) -> Dict[str, Any]:
    response = {
        "message": message,
        "member": serialize_document(change.member),
        "targets": serialize_documents(change.targets),
    }
    if change.moved:
        response["moved"] = convert_objectid(list(change.moved))
    return response
