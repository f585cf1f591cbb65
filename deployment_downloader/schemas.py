import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def is_path_segment(name: Any) -> bool:
    if not isinstance(name, str) or name in ('', '.', '..'):
        return False
    return not any(sep and sep in name for sep in (os.sep, os.altsep))


class NodeKind(str, Enum):
    DIRECTORY = 'directory'
    FILE = 'file'
    UNSUPPORTED = 'unsupported'


class RemoteNode(BaseModel):
    """One entry of a deployment's file tree.

    Built from the ``/files`` response, where an entry looks like
    ``{"name": "src", "type": "directory", "children": [...]}`` or
    ``{"name": "a.txt", "type": "file", "uid": "..."}``. Entry types the
    downloader does not know about (``lambda`` and friends) become
    ``UNSUPPORTED`` instead of failing validation, and so do entries whose
    name is not a single local path segment.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    kind: NodeKind = Field(alias='type')
    remote_id: str | None = Field(default=None, alias='uid')
    children: tuple['RemoteNode', ...] = ()

    @model_validator(mode='before')
    @classmethod
    def _dispatch_kind(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_kind = data.get('type', data.get('kind'))
        data.pop('kind', None)
        try:
            kind = NodeKind(raw_kind)
        except ValueError:
            kind = NodeKind.UNSUPPORTED
        uid = data.get('uid', data.pop('remote_id', None))
        if kind is NodeKind.FILE and not uid:
            kind = NodeKind.UNSUPPORTED
        if not is_path_segment(data.get('name')):
            kind = NodeKind.UNSUPPORTED
        data['type'] = kind
        data['uid'] = uid if kind is NodeKind.FILE else None
        if kind is not NodeKind.DIRECTORY or data.get('children') is None:
            data['children'] = ()
        return data

    @property
    def is_directory(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE


RemoteNode.model_rebuild()


def parse_tree(raw: list[dict[str, Any]]) -> tuple[RemoteNode, ...]:
    return tuple(RemoteNode.model_validate(entry) for entry in raw)


class Deployment(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str = Field(validation_alias=AliasChoices('id', 'uid'))
    name: str
    url: str | None = None
    state: str | None = Field(
        default=None,
        validation_alias=AliasChoices('state', 'readyState'),
    )
    created_at: int | None = Field(
        default=None,
        validation_alias=AliasChoices('createdAt', 'created', 'created_at'),
    )


@dataclass(frozen=True)
class DownloadTask:
    remote_id: str
    destination: str
    relative_path: str


@dataclass(frozen=True)
class FailedFile:
    relative_path: str
    attempts: int
    message: str


@dataclass
class DownloadReport:
    downloaded: list[str] = field(default_factory=list)
    bytes_downloaded: int = 0
    failed: list[FailedFile] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def downloaded_count(self) -> int:
        return len(self.downloaded)

    @property
    def ok(self) -> bool:
        return not self.failed
