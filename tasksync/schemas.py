from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SyncStatusValue = Literal["pending", "synced", "error"]


class TaskSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str = ""
    completed: bool = False
    is_deleted: bool = False
    sync_status: SyncStatusValue = "pending"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_synced_at: datetime | None = None
    server_id: str | None = None


class TaskCreate(BaseModel):
    title: str | None = None
    description: str | None = None


class TaskChanges(BaseModel):
    title: str | None = None
    description: str | None = None
    completed: bool | None = None

    def provided(self) -> dict[str, Any]:
        """Fields the caller actually supplied."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


# Queue payloads, tagged by operation. The stored/wire form is the untagged
# ``data`` dict; the operation column (or item field) supplies the tag.


class CreatePayload(BaseModel):
    operation: Literal["create"] = "create"
    task: TaskSnapshot

    def to_data(self) -> dict[str, Any]:
        return self.task.model_dump(mode="json", exclude_none=True)


class UpdatePayload(BaseModel):
    operation: Literal["update"] = "update"
    changes: TaskChanges

    def to_data(self) -> dict[str, Any]:
        return self.changes.provided()


class DeletePayload(BaseModel):
    operation: Literal["delete"] = "delete"

    def to_data(self) -> dict[str, Any]:
        return {}


MutationPayload = Annotated[
    Union[CreatePayload, UpdatePayload, DeletePayload],
    Field(discriminator="operation"),
]

_payload_adapter = TypeAdapter(MutationPayload)
_DATA_FIELDS = {"create": "task", "update": "changes"}


def parse_payload(operation: str, data: dict[str, Any]) -> MutationPayload:
    """Validate an untagged ``data`` dict against the payload for ``operation``.

    Raises ``pydantic.ValidationError`` for an unknown operation or a data
    shape that does not match it.
    """
    body: dict[str, Any] = {"operation": operation}
    field = _DATA_FIELDS.get(operation)
    if field is not None:
        body[field] = data
    return _payload_adapter.validate_python(body)


# Batch wire format


class BatchItem(BaseModel):
    id: str
    client_id: str
    operation: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    retry_count: int = 0


class BatchRequest(BaseModel):
    items: list[BatchItem]
    client_timestamp: datetime


class IncomingBatch(BaseModel):
    # Left loose so a missing or non-list ``items`` can be answered with 400
    # and bad individual items with per-item error outcomes.
    items: Any = None
    client_timestamp: datetime | None = None


class ItemOutcome(BaseModel):
    client_id: str
    server_id: str | None = None
    status: Literal["success", "error"]
    error: str | None = None
    resolved_data: TaskSnapshot | None = None


class BatchResponse(BaseModel):
    processed_items: list[ItemOutcome]


# Sync control responses


class SyncErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    operation: str
    error: str
    timestamp: datetime


class SyncResultRead(BaseModel):
    success: bool
    synced_items: int
    failed_items: int
    errors: list[SyncErrorRead]


class SyncStatusRead(BaseModel):
    pending_sync_count: int
    last_sync_timestamp: datetime | None = None
    is_online: bool
    sync_queue_size: int


class RetryResponse(BaseModel):
    requeued: int
