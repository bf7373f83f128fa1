from __future__ import annotations

from typing import Any

from catalogforge.domain.models.catalog import Group


def validate_groups(groups: list[Group]) -> list[dict[str, Any]]:
    """Structural checks on merged groups; each problem becomes one error record."""
    errors: list[dict[str, Any]] = []
    for group_index, group in enumerate(groups):
        if not group.title.strip():
            errors.append({"group": group_index, "field": "title", "message": "title is empty"})
        for variant_index, variant in enumerate(group.variants):
            where = {"group": group_index, "variant": variant_index}
            if not (variant.name or variant.code):
                errors.append({**where, "field": "name", "message": "variant has neither name nor code"})
            if not 0.0 <= variant.confidence <= 1.0:
                errors.append({**where, "field": "confidence", "message": f"confidence {variant.confidence} outside [0, 1]"})
            if variant.price_value is not None and variant.price_value < 0:
                errors.append({**where, "field": "price_value", "message": f"negative price {variant.price_value}"})
            if variant.gst_percent is not None and not 0 <= variant.gst_percent <= 100:
                errors.append({**where, "field": "gst_percent", "message": f"gst {variant.gst_percent} outside [0, 100]"})
    return errors
