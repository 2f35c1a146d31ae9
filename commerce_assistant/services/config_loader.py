"""Loading, validation and hot reload of the action configuration file.

Validation runs in a fixed order:

1. structure (every field of every action, all errors collected)
2. ``id`` uniqueness
3. dependency and composed-step resolution within the same file
4. default application (``globals`` under each action, then schema defaults)

A failure at any stage raises ``ConfigError`` and nothing downstream is built.
"""

import asyncio
import contextlib
import json
import logging
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pydantic
import yaml

from commerce_assistant.core.exceptions import AssistantError, ConfigError, ConfigErrorKind
from commerce_assistant.schemas.actions import (
    ActionDefinition,
    ComposedImplementation,
    ConfigurationFile,
    GlobalSettings,
)

logger = logging.getLogger(__name__)

MAX_PARAMETER_DEPTH = 8
SUPPORTED_SUFFIXES = (".json", ".yaml", ".yml")
PARAMETER_NAME = re.compile(r"[A-Za-z][A-Za-z0-9_]*")


# === Parsing ===


def parse_config_text(path: Path, text: str) -> Any:
    """Parse JSON or YAML text according to the file extension."""
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            return json.loads(text)
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(ConfigErrorKind.PARSE, [f"{path}: {e}"]) from e
    raise ConfigError(
        ConfigErrorKind.PARSE, [f"{path}: unsupported configuration format '{suffix}'"]
    )


def _read(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(ConfigErrorKind.UNREADABLE, [f"{path}: {e}"]) from e
    return parse_config_text(path, text)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``. Lists are replaced."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _merge_environment(raw: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge an environment override file. ``actions`` entries merge by id."""
    override = dict(override)
    action_overrides = override.pop("actions", None)
    merged = deep_merge(raw, override)

    if isinstance(action_overrides, list) and isinstance(raw.get("actions"), list):
        by_id = {
            a["id"]: a for a in action_overrides if isinstance(a, dict) and "id" in a
        }
        actions = []
        for action in raw["actions"]:
            if isinstance(action, dict) and action.get("id") in by_id:
                actions.append(deep_merge(action, by_id.pop(action["id"])))
            else:
                actions.append(action)
        actions.extend(by_id.values())
        merged["actions"] = actions

    return merged


def _environment_override_path(path: Path, environment: str) -> Path | None:
    for suffix in SUPPORTED_SUFFIXES:
        candidate = path.with_name(f"actions.{environment}{suffix}")
        if candidate.is_file():
            return candidate
    return None


# === Validation ===


def _parameter_shape_errors(raw: dict[str, Any]) -> list[str]:
    """Report unusable parameter names and nesting beyond MAX_PARAMETER_DEPTH."""
    errors: list[str] = []

    def check_name(name: Any, where: str) -> None:
        if not isinstance(name, str) or not PARAMETER_NAME.fullmatch(name):
            errors.append(
                f"{where}: parameter name must start with a letter and contain only "
                "letters, digits and underscores"
            )
        elif name.startswith("model_"):
            errors.append(f"{where}: parameter name must not start with 'model_'")

    def walk(node: Any, where: str, depth: int) -> None:
        if not isinstance(node, dict):
            return
        if depth > MAX_PARAMETER_DEPTH:
            errors.append(f"{where}: parameter nesting exceeds {MAX_PARAMETER_DEPTH} levels")
            return
        items = node.get("items")
        if isinstance(items, dict):
            walk(items, f"{where}.items", depth + 1)
        properties = node.get("properties")
        if isinstance(properties, dict):
            for name, child in properties.items():
                check_name(name, f"{where}.properties.{name}")
                walk(child, f"{where}.properties.{name}", depth + 1)

    actions = raw.get("actions")
    if not isinstance(actions, list):
        return errors
    for index, action in enumerate(actions):
        if not isinstance(action, dict):
            continue
        parameters = action.get("parameters")
        if isinstance(parameters, dict):
            for name, schema in parameters.items():
                check_name(name, f"actions.{index}.parameters.{name}")
                walk(schema, f"actions.{index}.parameters.{name}", 1)
        modes = action.get("modes")
        if isinstance(modes, dict):
            for mode, settings in modes.items():
                required = settings.get("requiredFields") if isinstance(settings, dict) else None
                if isinstance(required, list):
                    for name in required:
                        check_name(name, f"actions.{index}.modes.{mode}.requiredFields.{name}")
    return errors


def _format_pydantic_errors(error: pydantic.ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in e['loc']) or '<root>'}: {e['msg']}"
        for e in error.errors()
    ]


def apply_defaults(action: ActionDefinition, globals_: GlobalSettings) -> ActionDefinition:
    """Merge global defaults under an action and fill schema defaults.

    Action-level values win. Applying this to an already-defaulted action
    returns an equal object.
    """
    merged = deep_merge(
        globals_.model_dump(by_alias=True, exclude_unset=True),
        action.model_dump(by_alias=True, exclude_unset=True),
    )
    return ActionDefinition.model_validate(merged)


def validate_configuration(raw: Any) -> ConfigurationFile:
    """Validate parsed configuration data and return the defaulted file."""
    if not isinstance(raw, dict):
        raise ConfigError(
            ConfigErrorKind.STRUCTURE, ["<root>: configuration must be a mapping"]
        )

    # 1. Structure
    errors = _parameter_shape_errors(raw)
    if errors:
        raise ConfigError(ConfigErrorKind.STRUCTURE, errors)
    try:
        config = ConfigurationFile.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ConfigError(ConfigErrorKind.STRUCTURE, _format_pydantic_errors(e)) from e

    # 2. Uniqueness
    seen: set[str] = set()
    duplicates: list[str] = []
    for action in config.actions:
        if action.id in seen:
            duplicates.append(f"duplicate action id '{action.id}'")
        seen.add(action.id)
    if duplicates:
        raise ConfigError(ConfigErrorKind.DUPLICATE_ID, duplicates)

    # 3. References
    dangling = [
        f"action '{action.id}' depends on unknown action '{dep}'"
        for action in config.actions
        for dep in action.dependencies
        if dep not in seen
    ]
    if dangling:
        raise ConfigError(ConfigErrorKind.DANGLING_DEPENDENCY, dangling)

    unknown_steps = [
        f"composed action '{action.id}' references unknown step '{step}'"
        for action in config.actions
        if isinstance(action.implementation, ComposedImplementation)
        for step in action.implementation.steps
        if step not in seen
    ]
    if unknown_steps:
        raise ConfigError(ConfigErrorKind.UNKNOWN_STEP, unknown_steps)

    # 4. Defaults
    try:
        actions = [apply_defaults(action, config.globals) for action in config.actions]
    except pydantic.ValidationError as e:
        raise ConfigError(ConfigErrorKind.STRUCTURE, _format_pydantic_errors(e)) from e
    return config.model_copy(update={"actions": actions})


def load_configuration(path: str | Path, environment: str | None = None) -> ConfigurationFile:
    """Load, validate and default an action configuration file.

    Args:
        path: JSON or YAML file.
        environment: When given and different from the file's own
            ``environment``, a sibling ``actions.<environment>.json|yaml``
            file is merged in before validation if it exists.

    Raises:
        ConfigError: On any read, parse or validation failure.
    """
    path = Path(path)
    raw = _read(path)

    if environment and isinstance(raw, dict) and raw.get("environment") != environment:
        override_path = _environment_override_path(path, environment)
        if override_path is not None:
            override = _read(override_path)
            if not isinstance(override, dict):
                raise ConfigError(
                    ConfigErrorKind.STRUCTURE,
                    [f"{override_path}: override must be a mapping"],
                )
            raw = _merge_environment(raw, override)
            logger.info("Applied %s overrides from %s", environment, override_path)

    config = validate_configuration(raw)
    logger.info(
        "Loaded %d actions from %s (version %s)", len(config.actions), path, config.version
    )
    return config


# === Hot reload ===


class ConfigWatcher:
    """Poll a configuration file and reload it when it changes.

    A reload that fails validation, or whose ``on_reload`` callback raises,
    is logged and leaves the previous state in place. The polling task keeps
    running after any failed check.
    """

    def __init__(
        self,
        path: str | Path,
        on_reload: Callable[[ConfigurationFile], None],
        *,
        environment: str | None = None,
        interval: float = 1.0,
        debounce: float = 0.3,
    ) -> None:
        self.path = Path(path)
        self.on_reload = on_reload
        self.environment = environment
        self.interval = interval
        self.debounce = debounce
        self._last_mtime: int | None = None
        self._task: asyncio.Task[None] | None = None

    def _mtime(self) -> int | None:
        try:
            return os.stat(self.path).st_mtime_ns
        except FileNotFoundError:
            return None

    def start(self) -> None:
        if self._task is not None:
            return
        self._last_mtime = self._mtime()
        self._task = asyncio.create_task(self._run(), name=f"config-watcher:{self.path}")
        logger.info("Watching %s for changes", self.path)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check()
            except Exception:
                logger.exception("Configuration watch check failed: %s", self.path)

    async def check(self) -> bool:
        """Reload if the file changed since the last check. Returns True on a swap."""
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        # Editors often write in several steps
        await asyncio.sleep(self.debounce)
        return await self.reload()

    async def reload(self) -> bool:
        logger.info("Reloading configuration: %s", self.path)
        try:
            config = await asyncio.to_thread(load_configuration, self.path, self.environment)
            self.on_reload(config)
        except AssistantError as e:
            logger.error("Failed to reload configuration, keeping previous registry: %s", e)
            return False
        except Exception:
            logger.exception("Unexpected error reloading configuration, keeping previous registry")
            return False
        logger.info("Configuration reloaded successfully")
        return True
