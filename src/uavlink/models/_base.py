"""Base model and enum for uavlink wire types.

Every wire model inherits from :class:`HubBaseModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields serialise to the
  camelCase keys observers expect.
* A ``model_validator(mode="before")`` that strips device sentinel values
  (``""``, ``"--"``, NaN) so the field stays absent instead of failing.

Enumerated strings inherit from :class:`HubEnum` which matches values
case-insensitively and resolves legacy spellings through ``_aliases``.
"""

from __future__ import annotations

import enum
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

# Sentinel strings devices use for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})


def is_sentinel(value: Any) -> bool:
    """Return ``True`` when *value* means "field not present"."""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() in _SENTINELS:
        return True
    return isinstance(value, float) and math.isnan(value)


class HubEnum(enum.StrEnum):
    """Base for enumerated wire strings.

    Unknown values raise ``ValueError`` (so pydantic reports a validation
    error); only case differences and the spellings listed by ``_aliases``
    are tolerated.
    """

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {}

    @classmethod
    def _missing_(cls, value: object) -> HubEnum | None:
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        target = cls._aliases().get(normalized)
        if target is not None:
            return cls(target)
        return None


class HubBaseModel(BaseModel):
    """Base for uavlink wire models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_sentinels(cls, values: Any) -> Any:
        """Drop sentinel values so the field default (``None``) is used."""
        if not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if not is_sentinel(value)}

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible camelCase dict with absent fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
