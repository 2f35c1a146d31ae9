"""Pydantic schemas for the declarative action configuration file.

Configuration files use camelCase keys (``requiresAuth``, ``timeoutMs``);
the models expose snake_case attributes and accept either spelling.
Every model is frozen: a loaded configuration is never mutated in place.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AssistantMode(StrEnum):
    B2C = "b2c"
    B2B = "b2b"


ActionCategory = Literal["search", "cart", "customer", "checkout", "b2b", "support"]
ParameterType = Literal["string", "number", "integer", "boolean", "object", "array"]


class ConfigSchema(BaseModel):
    """Base for configuration models (camelCase aliases, immutable)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


# === Parameters ===


class ParameterSchema(ConfigSchema):
    """Declared schema for one action parameter. Objects and arrays nest."""

    type: ParameterType
    required: bool = False
    description: str | None = None
    default: Any = None
    enum: list[str | int | float | bool] | None = None
    minimum: float | None = Field(None, alias="min")
    maximum: float | None = Field(None, alias="max")
    pattern: str | None = None
    items: "ParameterSchema | None" = None
    properties: "dict[str, ParameterSchema] | None" = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


# === Policy sections ===


class RateLimit(ConfigSchema):
    requests: int = Field(..., ge=1)
    window_ms: int = Field(..., ge=1)


class InputValidation(ConfigSchema):
    max_length: int | None = Field(None, ge=1)
    banned_patterns: list[str] | None = None
    allowed_domains: list[str] | None = None


class SecuritySettings(ConfigSchema):
    requires_auth: bool = False
    required_permissions: list[str] | None = None
    rate_limit: RateLimit | None = None
    input_validation: InputValidation | None = None


class Parallelism(ConfigSchema):
    max_concurrent: int = Field(1, ge=1)
    batch_size: int | None = Field(None, ge=1)


class PerformanceSettings(ConfigSchema):
    timeout_ms: int = Field(30000, ge=1)
    retries: int = Field(0, ge=0)
    backoff_ms: int = Field(1000, ge=0)
    parallelism: Parallelism | None = None


class LoggingSettings(ConfigSchema):
    level: Literal["debug", "info", "warn", "error"] = "info"
    include_params: bool = False
    include_result: bool = False


class MetricsSettings(ConfigSchema):
    enabled: bool = True
    custom_labels: dict[str, str] | None = None


class TracingSettings(ConfigSchema):
    enabled: bool = True
    propagate_context: bool = True


class ObservabilitySettings(ConfigSchema):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings | None = None
    tracing: TracingSettings | None = None


class ResponseSettings(ConfigSchema):
    format: Literal["text", "markdown", "json", "custom"] = "markdown"
    template: str | None = None
    include_metadata: bool = False


# === Implementation variants ===


class FunctionImplementation(ConfigSchema):
    type: Literal["function"]
    handler: str | None = None  # defaults to the action id


class ComposedImplementation(ConfigSchema):
    type: Literal["composed"]
    steps: list[str] = Field(..., min_length=1)


class ExternalImplementation(ConfigSchema):
    type: Literal["external"]
    endpoint: str = Field(..., pattern=r"^https?://")
    method: Literal["GET", "POST", "PUT", "PATCH"] = "POST"


Implementation = Annotated[
    FunctionImplementation | ComposedImplementation | ExternalImplementation,
    Field(discriminator="type"),
]


# === Modes ===


class ModeSettings(ConfigSchema):
    enabled: bool = True
    overrides: dict[str, Any] = Field(default_factory=dict)
    required_fields: list[str] = Field(default_factory=list)


class ModeConfig(ConfigSchema):
    b2c: ModeSettings | None = None
    b2b: ModeSettings | None = None

    def for_mode(self, mode: AssistantMode) -> ModeSettings | None:
        return self.b2b if mode == AssistantMode.B2B else self.b2c


# === Actions and file ===


class ActionDefinition(ConfigSchema):
    """Declarative capability descriptor."""

    id: str = Field(..., min_length=1)
    name: str
    description: str
    category: ActionCategory
    parameters: dict[str, ParameterSchema] = Field(default_factory=dict)
    implementation: Implementation
    enabled: bool = True
    modes: ModeConfig | None = None
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    response: ResponseSettings = Field(default_factory=ResponseSettings)
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GlobalSettings(ConfigSchema):
    """Defaults merged under every action (action-level values win)."""

    security: SecuritySettings | None = None
    performance: PerformanceSettings | None = None
    observability: ObservabilitySettings | None = None
    response: ResponseSettings | None = None


class ConfigurationFile(ConfigSchema):
    version: str
    environment: Literal["development", "staging", "production"] | None = None
    actions: list[ActionDefinition]
    globals: GlobalSettings = Field(default_factory=GlobalSettings)


ParameterSchema.model_rebuild()
