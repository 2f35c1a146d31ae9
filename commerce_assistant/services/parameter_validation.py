"""Compile declared parameter schemas into pydantic models.

Each action gets one model built at registry-build time, so invoking an
action only runs model validation. Undeclared keys pass through untouched.
"""

import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Annotated, Any, Literal, Optional
from urllib.parse import urlparse

import pydantic
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PydanticUserError,
    create_model,
)
from pydantic import StrictBool, StrictInt, StrictStr

from commerce_assistant.core.exceptions import ConfigError, ConfigErrorKind, ValidationError
from commerce_assistant.schemas.actions import InputValidation, ParameterSchema

_MODEL_CONFIG = ConfigDict(extra="allow")
_UNSAFE_NAME = re.compile(r"[^0-9a-zA-Z_]")


def _require_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError("Input should be a number")
    return value


def _pattern_validator(action_id: str, where: str, pattern: str) -> AfterValidator:
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise ConfigError(
            ConfigErrorKind.STRUCTURE,
            [f"action '{action_id}' parameter '{where}': invalid pattern {pattern!r}: {e}"],
        ) from e

    def check(value: str) -> str:
        if not compiled.search(value):
            raise ValueError(f"String should match pattern '{pattern}'")
        return value

    return AfterValidator(check)


def _int_or_none(value: float | None) -> int | None:
    return None if value is None else int(value)


def _annotation(action_id: str, where: str, schema: ParameterSchema) -> Any:
    """Return the type annotation enforcing every declared constraint."""
    if schema.enum:
        return Literal[tuple(schema.enum)]

    match schema.type:
        case "string":
            metadata: list[Any] = [
                Field(
                    min_length=_int_or_none(schema.minimum),
                    max_length=_int_or_none(schema.maximum),
                )
            ]
            if schema.pattern:
                metadata.append(_pattern_validator(action_id, where, schema.pattern))
            return Annotated[StrictStr, *metadata]
        case "number":
            return Annotated[
                float,
                BeforeValidator(_require_number),
                Field(ge=schema.minimum, le=schema.maximum),
            ]
        case "integer":
            return Annotated[StrictInt, Field(ge=schema.minimum, le=schema.maximum)]
        case "boolean":
            return StrictBool
        case "array":
            item = (
                _annotation(action_id, f"{where}[]", schema.items) if schema.items else Any
            )
            return Annotated[
                list[item],  # type: ignore[valid-type]
                Field(
                    min_length=_int_or_none(schema.minimum),
                    max_length=_int_or_none(schema.maximum),
                ),
            ]
        case "object":
            if not schema.properties:
                return dict[str, Any]
            return _build_model(action_id, where, schema.properties, ())
    return Any


def _field(
    action_id: str, where: str, schema: ParameterSchema, force_required: bool
) -> tuple[Any, Any]:
    annotation = _annotation(action_id, where, schema)
    description = schema.description
    if force_required or (schema.required and not schema.has_default):
        return annotation, Field(..., description=description)
    default = schema.default if schema.has_default else None
    return Optional[annotation], Field(default, description=description)


def _build_model(
    action_id: str,
    where: str,
    parameters: Mapping[str, ParameterSchema],
    required_fields: Iterable[str],
) -> type[BaseModel]:
    required = set(required_fields)
    fields: dict[str, Any] = {
        name: _field(action_id, f"{where}.{name}" if where else name, schema, name in required)
        for name, schema in parameters.items()
    }
    # Mode-required fields the base definition never declared
    for name in required - fields.keys():
        fields[name] = (Any, Field(...))

    model_name = _UNSAFE_NAME.sub("_", f"{action_id}_{where or 'params'}")
    try:
        return create_model(model_name, __config__=_MODEL_CONFIG, **fields)
    except (PydanticUserError, NameError, TypeError, ValueError) as e:
        raise ConfigError(
            ConfigErrorKind.STRUCTURE,
            [f"action '{action_id}' parameter '{where or '<root>'}': {e}"],
        ) from e


def build_parameters_model(
    action_id: str,
    parameters: Mapping[str, ParameterSchema],
    required_fields: Iterable[str] = (),
) -> type[BaseModel]:
    """Build the validation model for an action's merged parameter schema.

    Raises:
        ConfigError: If a declared ``pattern`` is not a valid regex or a
            parameter cannot become a model field.
    """
    return _build_model(action_id, "", parameters, required_fields)


def validate_parameters(
    action_id: str, model: type[BaseModel], params: Mapping[str, Any]
) -> dict[str, Any]:
    """Validate ``params`` and return them with declared defaults applied.

    Raises:
        ValidationError: Listing every violated constraint.
    """
    try:
        validated = model.model_validate(dict(params))
    except pydantic.ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError(action_id, errors) from e
    return validated.model_dump()


# === Input rules (security.inputValidation) ===


def _strings(value: Any, where: str = "") -> Iterator[tuple[str, str]]:
    if isinstance(value, str):
        yield where or "<value>", value
    elif isinstance(value, Mapping):
        for key, item in value.items():
            yield from _strings(item, f"{where}.{key}" if where else str(key))
    elif isinstance(value, list | tuple):
        for index, item in enumerate(value):
            yield from _strings(item, f"{where}[{index}]")


class InputRules:
    """Compiled ``security.inputValidation`` rules for one action."""

    def __init__(self, action_id: str, rules: InputValidation) -> None:
        self.action_id = action_id
        self.max_length = rules.max_length
        self.allowed_domains = [d.lower() for d in rules.allowed_domains or []]
        try:
            self.banned = [re.compile(p, re.IGNORECASE) for p in rules.banned_patterns or []]
        except re.error as e:
            raise ConfigError(
                ConfigErrorKind.STRUCTURE,
                [f"action '{action_id}': invalid banned pattern: {e}"],
            ) from e

    def _domain_allowed(self, host: str) -> bool:
        host = host.lower()
        return any(host == d or host.endswith(f".{d}") for d in self.allowed_domains)

    def check(self, params: Mapping[str, Any]) -> None:
        """Raise ValidationError if any string value breaks a rule."""
        errors: list[str] = []
        for where, value in _strings(params):
            if self.max_length is not None and len(value) > self.max_length:
                errors.append(f"{where}: input validation failed, longer than {self.max_length}")
            for pattern in self.banned:
                if pattern.search(value):
                    errors.append(f"{where}: input validation failed, contains banned content")
                    break
            if self.allowed_domains and value.startswith(("http://", "https://")):
                host = urlparse(value).hostname or ""
                if not self._domain_allowed(host):
                    errors.append(f"{where}: input validation failed, domain '{host}' not allowed")
        if errors:
            raise ValidationError(self.action_id, errors)
