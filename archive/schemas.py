from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Literal

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)


OrderBy = Literal["date", "distance"]
SortOrder = Literal["asc", "desc"]

LIST_PARAMS = ("municipalities", "eventTypes")


class ValidationFailed(Exception):
    def __init__(self, fields: list[dict]) -> None:
        super().__init__(
            "; ".join(f"{f['field']}: {f['message']}" for f in fields) or "invalid query"
        )
        self.fields = fields


def _split_ids(value: object) -> object:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class ArchiveQuery(BaseModel):
    """Filters for the event archive, all optional and AND-combined."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    q: str | None = Field(None, max_length=200)
    municipalities: list[int] = []
    event_types: list[int] = Field(default_factory=list, alias="eventTypes")
    on_going: bool | None = Field(None, alias="onGoing")
    date_from: date | None = Field(None, alias="from")
    date_to: date | None = Field(None, alias="to", validate_default=True)
    lat: float | None = Field(None, ge=-90, le=90)
    lon: float | None = Field(None, ge=-180, le=180)
    radius_km: float | None = Field(
        None, gt=0, le=1000, alias="radius", validate_default=True
    )
    order_by: OrderBy = Field("date", alias="orderBy")
    order: SortOrder | None = Field(None, validate_default=True)
    count: int = Field(100, ge=1, le=1000)
    include_without_description: bool = Field(False, alias="includeWithoutDescription")

    @field_validator("municipalities", "event_types", mode="before")
    @classmethod
    def split_ids(cls, v: object) -> object:
        return _split_ids(v)

    @field_validator("date_to")
    @classmethod
    def date_range_ordered(cls, v: date | None, info: ValidationInfo) -> date | None:
        date_from = info.data.get("date_from")
        if v is not None and date_from is not None and v < date_from:
            raise ValueError("must not be before 'from'")
        return v

    @field_validator("radius_km")
    @classmethod
    def geo_complete(cls, v: float | None, info: ValidationInfo) -> float | None:
        given = [info.data.get("lat") is not None, info.data.get("lon") is not None, v is not None]
        if any(given) and not all(given):
            raise ValueError("lat, lon and radius must be given together")
        return v

    @field_validator("order")
    @classmethod
    def distance_is_ascending(
        cls, v: SortOrder | None, info: ValidationInfo
    ) -> SortOrder | None:
        if info.data.get("order_by") == "distance" and v == "desc":
            raise ValueError("distance ordering is ascending only")
        return v

    @property
    def has_geo(self) -> bool:
        return self.lat is not None and self.lon is not None and self.radius_km is not None


def _errors_to_fields(exc: ValidationError) -> list[dict]:
    fields: list[dict] = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        fields.append(
            {
                "field": ".".join(loc) or "query",
                "message": str(error.get("msg", "invalid value")).removeprefix(
                    "Value error, "
                ),
            }
        )
    return fields


def parse_archive_query(params: Mapping[str, object]) -> ArchiveQuery:
    cleaned = {
        key: value
        for key, value in params.items()
        if not (isinstance(value, str) and not value.strip())
    }
    try:
        return ArchiveQuery.model_validate(cleaned)
    except ValidationError as e:
        raise ValidationFailed(_errors_to_fields(e)) from e


class SubscriptionCreate(BaseModel):
    model_config = {"populate_by_name": True}

    token: str = Field(min_length=1, max_length=4096)
    municipalities: list[int] = []
    event_types: list[int] = Field(default_factory=list, alias="eventTypes")
