"""Typed change requests.

Payloads use the JSON names operators submit (``changeId``, ``target.uri``,
``operation.type`` ...). Once validated, a request is immutable.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

ALLOWED_PARTIAL_FILTER_OPERATORS = frozenset(
    {"$exists", "$eq", "$in", "$gt", "$gte", "$lt", "$lte", "$ne"}
)

# Keyword parameters of ``Database.create_collection`` that are not server options.
RESERVED_COLLECTION_OPTIONS = frozenset(
    {
        "name",
        "session",
        "check_exists",
        "codec_options",
        "read_preference",
        "write_concern",
        "read_concern",
    }
)

_INDEX_NAME_PREFIX = "idx_"


def _require_text(value: Any, what: str) -> Any:
    if isinstance(value, str) and not value.strip():
        raise ValueError(f"{what} required")
    return value


def derive_index_name(spec: dict[str, int]) -> str:
    """Name an index after its sorted field names, e.g. ``idx_a_b``."""
    return _INDEX_NAME_PREFIX + "_".join(sorted(spec))


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Target(_Frozen):
    uri: str
    database: str

    @field_validator("uri", "database", mode="before")
    @classmethod
    def _not_blank(cls, value: Any, info: ValidationInfo) -> Any:
        return _require_text(value, info.field_name)


class CreateCollection(_Frozen):
    type: Literal["createCollection"] = "createCollection"
    collection: str
    options: dict[str, Any] | None = None

    @field_validator("collection", mode="before")
    @classmethod
    def _collection_required(cls, value: Any) -> Any:
        return _require_text(value, "collection")

    @field_validator("options")
    @classmethod
    def _no_reserved_options(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return None
        reserved = sorted(RESERVED_COLLECTION_OPTIONS.intersection(value))
        if reserved:
            raise ValueError(f"options contains reserved keys: {', '.join(reserved)}")
        return value


class IndexOptions(_Frozen):
    name: str | None = None
    unique: bool | None = None
    partial_filter_expression: dict[str, Any] | None = Field(
        default=None, alias="partialFilterExpression"
    )

    @field_validator("name", mode="before")
    @classmethod
    def _name_not_blank(cls, value: Any) -> Any:
        return _require_text(value, "name")

    @field_validator("partial_filter_expression")
    @classmethod
    def _only_allowed_operators(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return None
        disallowed = sorted(
            {
                operator
                for condition in value.values()
                if isinstance(condition, dict)
                for operator in condition
                if operator not in ALLOWED_PARTIAL_FILTER_OPERATORS
            }
        )
        if disallowed:
            raise ValueError(
                "partialFilterExpression contains disallowed operators: " + ", ".join(disallowed)
            )
        return value


class CreateIndex(_Frozen):
    type: Literal["createIndex"] = "createIndex"
    collection: str
    spec: dict[str, int]
    options: IndexOptions | None = None

    @field_validator("collection", mode="before")
    @classmethod
    def _collection_required(cls, value: Any) -> Any:
        return _require_text(value, "collection")

    @field_validator("spec", mode="before")
    @classmethod
    def _directions(cls, value: Any) -> Any:
        if not isinstance(value, dict) or not value:
            raise ValueError("spec required")
        invalid = [
            str(field)
            for field, direction in value.items()
            if isinstance(direction, bool) or direction not in (1, -1)
        ]
        if invalid:
            raise ValueError("index direction must be 1 or -1 for: " + ", ".join(invalid))
        return {str(field): int(direction) for field, direction in value.items()}

    @property
    def index_name(self) -> str:
        if self.options is not None and self.options.name:
            return self.options.name
        return derive_index_name(self.spec)

    @property
    def index_keys(self) -> list[tuple[str, int]]:
        return list(self.spec.items())

    def index_kwargs(self) -> dict[str, object]:
        kwargs: dict[str, object] = {"name": self.index_name}
        if self.options is not None:
            if self.options.unique is not None:
                kwargs["unique"] = self.options.unique
            if self.options.partial_filter_expression is not None:
                kwargs["partialFilterExpression"] = self.options.partial_filter_expression
        return kwargs


Operation = Annotated[Union[CreateCollection, CreateIndex], Field(discriminator="type")]


class ChangeRequest(_Frozen):
    change_id: str | None = Field(default=None, alias="changeId")
    target: Target
    operation: Operation
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("change_id", mode="before")
    @classmethod
    def _change_id_not_blank(cls, value: Any) -> Any:
        return _require_text(value, "changeId")

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value

    def with_change_id(self, change_id: str) -> "ChangeRequest":
        return self.model_copy(update={"change_id": change_id})

    def operation_document(self) -> dict[str, Any]:
        """The operation in its submitted JSON shape, as stored in audit records."""
        return self.operation.model_dump(by_alias=True, exclude_none=True)
