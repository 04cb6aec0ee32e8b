import json
import re
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml
from loguru import logger

from tasklane.matchers.builtin import BUILTIN_MATCHERS
from tasklane.matchers.types import SLOTS, MatcherConfig, Severity
from tasklane.presentation.types import PanelKind, PresentationPolicy, RevealKind

from .types import (
    DependsOrder,
    RegistryOptions,
    TaskConfig,
    TaskRegistry,
    TaskType,
    UnsupportedConfigFormatError,
    ValidationError,
)

TASK_KEYS = {
    "command",
    "args",
    "type",
    "env",
    "cwd",
    "group",
    "dependsOn",
    "dependsOrder",
    "problemMatchers",
    "presentation",
    "ignoreFailure",
    "detail",
}

PRESENTATION_KEYS = {
    "echo": "echo",
    "reveal": "reveal",
    "focus": "focus",
    "panel": "panel",
    "clear": "clear",
    "showReuseMessage": "show_reuse_message",
}


def load_file(path: str | Path) -> TaskRegistry:
    pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ValidationError(f"Config file not found: {pure_path}")

    if not pure_path.is_file():
        raise ValidationError(f"Config path is not a file: {pure_path}")

    fmt = _detect_format(pure_path)
    raw_file = _parse_file(pure_path, fmt)
    registry = load_registry(raw_file)
    logger.debug("Loaded {} task(s) from {}", len(registry), pure_path)
    return registry


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    text = path.read_text(encoding="utf-8")
    match fmt:
        case "yaml":
            try:
                raw_file = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise ValidationError(f"{path}: invalid YAML") from exc
        case "toml":
            try:
                raw_file = tomllib.loads(text)
            except tomllib.TOMLDecodeError as exc:
                raise ValidationError(f"{path}: invalid TOML") from exc
        case "json":
            try:
                raw_file = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"{path}: invalid JSON") from exc
        case _:
            raise AssertionError("Unreachable")

    if not isinstance(raw_file, Mapping):
        raise ValidationError(
            f"{path}: {fmt.upper()} parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def load_registry(definitions: Mapping[str, Any]) -> TaskRegistry:
    if not isinstance(definitions, Mapping):
        raise ValidationError(f"Task definitions must be a mapping, got {type(definitions)}")

    if "tasks" not in definitions:
        raise ValidationError("Missing 'tasks' field")

    raw_tasks = definitions["tasks"]
    if not isinstance(raw_tasks, Mapping):
        raise ValidationError(f"'tasks' must be a mapping, got {type(raw_tasks)}")

    if len(raw_tasks) < 1:
        raise ValidationError("There must be at least one task in the config file")

    matchers = _build_matchers(definitions.get("problemMatchers", {}))
    options = _build_options(definitions.get("options", {}))

    tasks: dict[str, TaskConfig] = {}
    for task_id, fields in raw_tasks.items():
        if not isinstance(task_id, str):
            raise ValidationError(f"Task id must be a string, got {type(task_id)}")

        if not isinstance(fields, Mapping):
            raise ValidationError(f"{task_id} must be a mapping")

        task_id_norm = task_id.strip()

        if len(task_id_norm) < 1:
            raise ValidationError("A task id can't be empty")

        if task_id_norm in tasks:
            raise ValidationError(f"Duplicate task id after normalization: {task_id_norm}")

        tasks[task_id_norm] = _build_task_config(task_id_norm, fields)

    for task in tasks.values():
        for dep in task.depends_on:
            if dep not in tasks:
                raise ValidationError(f"Task '{task.id}' has unknown dependency '{dep}'")
        for matcher in task.problem_matchers:
            if matcher not in matchers and matcher not in BUILTIN_MATCHERS:
                raise ValidationError(f"Task '{task.id}' uses unknown problem matcher '{matcher}'")

    return TaskRegistry(tasks=tasks, matchers=matchers, options=options)


def _build_task_config(task_id: str, fields: Mapping[str, Any]) -> TaskConfig:
    for field in fields.keys():
        if field not in TASK_KEYS:
            raise ValidationError(f"{task_id}: Can't process: {field}")

    if "command" not in fields:
        raise ValidationError(f"{task_id}: missing 'command'")

    command = _non_empty_string(task_id, "command", fields["command"])
    task = TaskConfig(id=task_id, command=command)

    if "args" in fields:
        task.args = _string_list(task_id, "args", fields["args"], strip=False)

    if "type" in fields:
        task.type = _enum(task_id, "type", TaskType, fields["type"])

    if "env" in fields:
        task.env = _env(task_id, fields["env"])

    if "cwd" in fields:
        task.cwd = _non_empty_string(task_id, "cwd", fields["cwd"])

    if "group" in fields:
        task.group, task.is_default = _group(task_id, fields["group"])

    if "dependsOn" in fields:
        raw_deps = fields["dependsOn"]
        if isinstance(raw_deps, str):
            raw_deps = [raw_deps]
        deps = _string_list(task_id, "dependsOn", raw_deps)
        # Duplicates are dropped, first occurrence wins.
        task.depends_on = list(dict.fromkeys(deps))

    if "dependsOrder" in fields:
        task.depends_order = _enum(task_id, "dependsOrder", DependsOrder, fields["dependsOrder"])

    if "problemMatchers" in fields:
        raw_matchers = fields["problemMatchers"]
        if isinstance(raw_matchers, str):
            raw_matchers = [raw_matchers]
        task.problem_matchers = list(
            dict.fromkeys(_string_list(task_id, "problemMatchers", raw_matchers))
        )

    if "presentation" in fields:
        task.presentation = _presentation(task_id, fields["presentation"])

    if "ignoreFailure" in fields:
        task.ignore_failure = _bool(task_id, "ignoreFailure", fields["ignoreFailure"])

    if "detail" in fields:
        if not isinstance(fields["detail"], str):
            raise ValidationError(f"{task_id}: The detail should be a string")
        task.detail = fields["detail"]

    return task


def _non_empty_string(task_id: str, name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{task_id}: The {name} should be a string")

    if len(value.strip()) < 1:
        raise ValidationError(f"{task_id}: '{name}' can't be empty")

    return value.strip()


def _string_list(task_id: str, name: str, value: Any, *, strip: bool = True) -> list[str]:
    if not isinstance(value, list):
        raise ValidationError(f"{task_id}: '{name}' should be a list")

    items = []
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(f"{task_id}: {item!r} should be a string in '{name}'")
        if strip:
            item = item.strip()
            if len(item) < 1:
                raise ValidationError(f"{task_id}: An entry of '{name}' is empty")
        items.append(item)

    return items


def _bool(task_id: str, name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{task_id}: '{name}' should be a boolean")
    return value


def _enum(task_id: str, name: str, enum_type, value: Any):
    allowed = [member.value for member in enum_type]
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(f"{task_id}: '{name}' must be one of {allowed}, got {value!r}")
    return enum_type(value)


def _env(task_id: str, value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"{task_id}: Env should be a mapping")

    env = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ValidationError(f"{task_id}: {key} should be a string")

        if len(key.strip()) < 1:
            raise ValidationError(f"{task_id}: A key can't be empty")

        if not isinstance(item, str):
            raise ValidationError(f"{task_id}: {item} should be a string")

        env[key.strip()] = item

    return env


def _group(task_id: str, value: Any) -> tuple[str, bool]:
    if isinstance(value, str):
        return _non_empty_string(task_id, "group", value), False

    if not isinstance(value, Mapping):
        raise ValidationError(f"{task_id}: 'group' should be a string or a mapping")

    unknown = set(value) - {"kind", "isDefault"}
    if unknown:
        raise ValidationError(f"{task_id}: Can't process group field(s): {sorted(unknown)}")

    if "kind" not in value:
        raise ValidationError(f"{task_id}: 'group' is missing 'kind'")

    kind = _non_empty_string(task_id, "group.kind", value["kind"])
    is_default = _bool(task_id, "group.isDefault", value.get("isDefault", False))
    return kind, is_default


def _presentation(task_id: str, value: Any) -> PresentationPolicy:
    if not isinstance(value, Mapping):
        raise ValidationError(f"{task_id}: 'presentation' should be a mapping")

    kwargs: dict[str, Any] = {}
    for key, item in value.items():
        if key not in PRESENTATION_KEYS:
            raise ValidationError(f"{task_id}: Can't process presentation field: {key}")

        name = f"presentation.{key}"
        match key:
            case "reveal":
                kwargs["reveal"] = _enum(task_id, name, RevealKind, item)
            case "panel":
                kwargs["panel"] = _enum(task_id, name, PanelKind, item)
            case _:
                kwargs[PRESENTATION_KEYS[key]] = _bool(task_id, name, item)

    return PresentationPolicy(**kwargs)


def _build_options(raw: Any) -> RegistryOptions:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"'options' must be a mapping, got {type(raw)}")

    options = RegistryOptions()
    for key, value in raw.items():
        match key:
            case "concurrency":
                if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                    raise ValidationError(f"options: 'concurrency' must be a positive integer, got {value!r}")
                options.concurrency = value
            case "continueOnFailure":
                options.continue_on_failure = _bool("options", key, value)
            case _:
                raise ValidationError(f"options: Can't process: {key}")

    return options


def _build_matchers(raw: Any) -> dict[str, MatcherConfig]:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"'problemMatchers' must be a mapping, got {type(raw)}")

    matchers = {}
    for name, fields in raw.items():
        if not isinstance(name, str) or len(name.strip()) < 1:
            raise ValidationError(f"Problem matcher name must be a non-empty string, got {name!r}")

        name = name.strip()
        if name.startswith("$"):
            raise ValidationError(f"Problem matcher '{name}': names starting with '$' are reserved")

        matchers[name] = _build_matcher_config(name, fields)

    return matchers


def _build_matcher_config(name: str, fields: Any) -> MatcherConfig:
    where = f"problemMatchers.{name}"

    if isinstance(fields, str):
        fields = {"pattern": fields}

    if not isinstance(fields, Mapping):
        raise ValidationError(f"{where} should be a regexp string or a mapping")

    unknown = set(fields) - {"owner", "severity", "pattern"}
    if unknown:
        raise ValidationError(f"{where}: Can't process: {sorted(unknown)}")

    if "pattern" not in fields:
        raise ValidationError(f"{where}: missing 'pattern'")

    pattern = fields["pattern"]
    if isinstance(pattern, str):
        pattern = {"regexp": pattern}

    if not isinstance(pattern, Mapping) or "regexp" not in pattern:
        raise ValidationError(f"{where}: 'pattern' should be a regexp string or a mapping with 'regexp'")

    unknown = set(pattern) - {"regexp", *SLOTS}
    if unknown:
        raise ValidationError(f"{where}.pattern: Can't process: {sorted(unknown)}")

    regexp_text = _non_empty_string(where, "regexp", pattern["regexp"])
    try:
        regexp = re.compile(regexp_text)
    except re.error as exc:
        raise ValidationError(f"{where}: invalid regexp: {exc}") from exc

    groups: dict[str, str | int] = {}
    for slot in SLOTS:
        if slot in pattern:
            index = pattern[slot]
            if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= regexp.groups:
                raise ValidationError(f"{where}.pattern: '{slot}' must be a group index in 0..{regexp.groups}")
            groups[slot] = index
        elif slot in regexp.groupindex:
            groups[slot] = slot

    if "message" not in groups:
        raise ValidationError(f"{where}: the pattern must capture a 'message'")

    severity = Severity.ERROR
    if "severity" in fields:
        severity = _enum(where, "severity", Severity, fields["severity"])

    owner = None
    if "owner" in fields:
        owner = _non_empty_string(where, "owner", fields["owner"])

    return MatcherConfig(name=name, regexp=regexp, groups=groups, severity=severity, owner=owner)
