"""Response schemas for the sObject-collection REST API."""

from __future__ import annotations

import logging
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, RootModel

log = logging.getLogger(__name__)


class RestBaseModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)
    _logged_extra_keys: ClassVar[set[str]] = set()

    def model_post_init(self, _context: object, /) -> None:
        extras = self.__pydantic_extra__
        if not extras:
            return
        new_keys = set(extras).difference(self._logged_extra_keys)
        if not new_keys:
            return
        self._logged_extra_keys.update(new_keys)
        log.debug(
            "REST %s: unmodeled keys: %s",
            type(self).__name__,
            ", ".join(sorted(new_keys)),
        )


class RecordAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    url: str | None = None


class QueryRecord(BaseModel):
    """One row of a query result; every column besides ``attributes`` is a field."""

    model_config = ConfigDict(extra="allow")

    attributes: RecordAttributes | None = None
    id: str | None = Field(default=None, alias="Id")

    def field_values(self) -> dict[str, object]:
        values: dict[str, object] = dict(self.__pydantic_extra__ or {})
        if self.id is not None:
            values["Id"] = self.id
        return values


class QueryResponse(RestBaseModel):
    total_size: int = Field(alias="totalSize")
    done: bool
    next_records_url: str | None = Field(default=None, alias="nextRecordsUrl")
    records: list[QueryRecord] = Field(default_factory=list["QueryRecord"])


class ApiError(RestBaseModel):
    status_code: str = Field(alias="statusCode")
    message: str
    fields: list[str] = Field(default_factory=list["str"])


class SaveResult(RestBaseModel):
    id: str | None = None
    success: bool
    created: bool | None = None
    errors: list[ApiError] = Field(default_factory=list["ApiError"])


class SaveResults(RootModel[list[SaveResult]]):
    pass


class ErrorResponse(RootModel[list[ApiError]]):
    pass
