"""Shared Pydantic base models and serializers."""
from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def datetime_to_utc_z(value: datetime) -> str:
    """
    Serialize datetime to RFC3339 with trailing 'Z'.

    Policy:
    - Naive datetime is treated as UTC (SQLite returns naive values).
    - Aware datetime is converted to UTC.
    """
    if value.tzinfo is None:
        utc_value = value.replace(tzinfo=timezone.utc)
    else:
        utc_value = value.astimezone(timezone.utc)

    iso_value = utc_value.isoformat()
    if iso_value.endswith("+00:00"):
        return iso_value[:-6] + "Z"
    return iso_value


class CamelModel(BaseModel):
    """Request/response model with camelCase JSON names and UTC 'Z' datetimes.

    Python code keeps snake_case attribute names; clients may send either form.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_encoders={datetime: datetime_to_utc_z},
    )


class CamelFromAttributesModel(CamelModel):
    """CamelModel that can be built from ORM objects."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        json_encoders={datetime: datetime_to_utc_z},
    )
