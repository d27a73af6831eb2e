"""Base model for pydamoov domain objects.

Every model inherits from :class:`DamoovBaseModel` which provides:

* ``frozen=True`` so instances can be shared between the ingestion task
  and readers without copying.
* ``alias_generator=to_camel`` so ``model_dump(by_alias=True)`` yields
  the camelCase JSON shape served to dashboards, while Python code uses
  snake_case attributes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DamoovBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )
