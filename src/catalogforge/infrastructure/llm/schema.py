from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from catalogforge.core.errors import MalformedResponseError
from catalogforge.core.text import parse_number
from catalogforge.domain.models.catalog import Group, Variant


class VariantPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str | None = None
    cas: str | None = None
    name: str | None = None
    pack: str | None = None
    price_value: float | None = None
    currency: str | None = None
    notes: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    fields_present: list[str] = Field(default_factory=list)

    @field_validator("price_value", mode="before")
    @classmethod
    def coerce_price(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_number(value)
        return value

    @field_validator("code", "cas", "name", "pack", "currency", "notes", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class GroupPayload(BaseModel):
    title: str | None = None
    category: str | None = None
    description: str | None = None
    specs_headers: list[str] = Field(default_factory=list)
    variants: list[VariantPayload] = Field(default_factory=list)


class ChunkResponsePayload(BaseModel):
    groups: list[GroupPayload]
    warnings: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    def to_groups(self) -> list[Group]:
        groups: list[Group] = []
        for payload in self.groups:
            variants = []
            for variant_payload in payload.variants:
                data = variant_payload.model_dump()
                variant = Variant.from_dict(data)
                if variant_payload.confidence is None:
                    variant.confidence = 0.5
                variants.append(variant)
            group = Group.from_dict(payload.model_dump(exclude={"variants"}))
            group.variants = variants
            groups.append(group)
        return groups


class CritiqueResponsePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passed: bool = Field(alias="pass")
    repairs: list[str] = Field(default_factory=list)
    explanations: list[str] = Field(default_factory=list)

    @field_validator("repairs", "explanations", mode="before")
    @classmethod
    def coerce_strings(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        return [
            json.dumps(item, ensure_ascii=False) if isinstance(item, dict) else str(item)
            for item in value
            if item is not None and str(item).strip()
        ]


def response_json_schema(model: type[BaseModel]) -> dict[str, Any]:
    return model.model_json_schema(by_alias=True)


def extract_json_object(content: str) -> dict[str, Any]:
    """The JSON object spanning the first '{' to the last '}' of a completion."""
    text = (content or "").strip()
    if not text:
        raise MalformedResponseError("Completion was empty")
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise MalformedResponseError("Completion does not contain a JSON object")
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Completion is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedResponseError("Completion JSON is not an object")
    return payload


def parse_chunk_response(content: str | dict[str, Any]) -> ChunkResponsePayload:
    payload = content if isinstance(content, dict) else extract_json_object(content)
    try:
        return ChunkResponsePayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"Completion does not match the catalog schema: {exc}") from exc


def parse_critique_response(content: str | dict[str, Any]) -> CritiqueResponsePayload:
    payload = content if isinstance(content, dict) else extract_json_object(content)
    try:
        return CritiqueResponsePayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"Critique does not match the verdict schema: {exc}") from exc
