"""
Update protocol parser.

Decodes the three message shapes of the remote change stream:

    put:    {"path": "/", "data": {"flags": {...}, "segments": {...}}}
    patch:  {"path": "/flags/<key>", "data": {...flag fields...}}
    delete: {"path": "/flags/<key>", "version": <int>}

Field order is never significant. A path whose collection is not a known
kind is not an error: the result has kind and key set to None so newer
producers can add collections without breaking older replicas.
"""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .errors import StreamProtocolError
from .models import ALL_KINDS, DataKind, FullDataSet, ItemDescriptor


class PutMessage(BaseModel):
    path: str | None = None
    data: dict[str, Any]


class PatchMessage(BaseModel):
    path: str
    data: dict[str, Any]


class DeleteMessage(BaseModel):
    path: str
    version: int = Field(ge=0)


@dataclass(frozen=True)
class PutData:
    path: str | None
    data: FullDataSet


@dataclass(frozen=True)
class PatchData:
    kind: DataKind | None
    key: str | None
    item: ItemDescriptor | None


@dataclass(frozen=True)
class DeleteData:
    kind: DataKind | None
    key: str | None
    version: int


def _describe_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def _validate(model: type[BaseModel], message_type: str, raw: str | bytes) -> Any:
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise StreamProtocolError(message_type, _describe_errors(e)) from e


def _decode_item(kind: DataKind, message_type: str, data: Any) -> ItemDescriptor:
    try:
        return kind.decode(data)
    except ValidationError as e:
        raise StreamProtocolError(message_type, f"{kind.stream_name}: {_describe_errors(e)}") from e


def parse_path(path: str) -> tuple[DataKind | None, str | None]:
    """Split "/<collection>/<key>" into (kind, key), or (None, None) if unrecognized."""
    for kind in ALL_KINDS:
        prefix = f"/{kind.stream_name}/"
        if path.startswith(prefix):
            return kind, path[len(prefix):]
    return None, None


def parse_put_data(raw: str | bytes) -> PutData:
    """Parse a full-replace message. "path" is optional, "data" is required."""
    message = _validate(PutMessage, "put", raw)

    all_data: FullDataSet = {}
    for kind in ALL_KINDS:
        collection = message.data.get(kind.stream_name)
        if collection is None:
            continue
        if not isinstance(collection, dict):
            raise StreamProtocolError("put", f"data.{kind.stream_name}: expected an object")
        all_data[kind] = {
            key: _decode_item(kind, "put", item)
            for key, item in collection.items()
        }

    return PutData(path=message.path, data=all_data)


def parse_patch_data(raw: str | bytes) -> PatchData:
    """Parse a single-item patch. "path" and "data" are both required."""
    message = _validate(PatchMessage, "patch", raw)

    kind, key = parse_path(message.path)
    if kind is None:
        return PatchData(kind=None, key=None, item=None)

    return PatchData(kind=kind, key=key, item=_decode_item(kind, "patch", message.data))


def parse_delete_data(raw: str | bytes) -> DeleteData:
    """Parse a delete. "path" and "version" are both required."""
    message = _validate(DeleteMessage, "delete", raw)

    kind, key = parse_path(message.path)
    return DeleteData(kind=kind, key=key, version=message.version)


# ============================================================
# ENCODING
# ============================================================

def make_put_message(all_data: FullDataSet, path: str = "/") -> str:
    data = {
        kind.stream_name: {key: kind.to_dict(key, item) for key, item in items.items()}
        for kind, items in all_data.items()
    }
    return json.dumps({"path": path, "data": data})


def make_patch_message(kind: DataKind, key: str, item: ItemDescriptor) -> str:
    return json.dumps({
        "path": f"/{kind.stream_name}/{key}",
        "data": kind.to_dict(key, item),
    })


def make_delete_message(kind: DataKind, key: str, version: int) -> str:
    return json.dumps({"path": f"/{kind.stream_name}/{key}", "version": version})
