"""Pure field mapping: transforms, string coercion and record mapping."""

from care_ingestion.mapping.engine import (
    CoercionResult,
    MappingResult,
    apply_mapping,
    apply_transform,
    coerce_from_string,
)

__all__ = [
    "CoercionResult",
    "MappingResult",
    "apply_mapping",
    "apply_transform",
    "coerce_from_string",
]
