"""Symbolic references to prior step outputs, and parameter sanitising for audit/logs.

A parameter value of the form ``{"$ref": "s1"}`` is replaced by the whole
output of step ``s1``; ``{"$ref": "s1.course.id"}`` walks into that output.
References may sit anywhere inside nested lists and dicts.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from src.core.exceptions import ReferenceResolutionError

REF_KEY = "$ref"

SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "auth",
    "authorization",
    "credential",
    "credentials",
    "email",
    "phone",
    "ssn",
    "private_key",
    "access_token",
    "refresh_token",
})
REDACTED = "[REDACTED]"


def is_reference(value: Any) -> bool:
    return isinstance(value, Mapping) and len(value) == 1 and isinstance(value.get(REF_KEY), str)


def parse_reference(value: Mapping[str, Any]) -> tuple[str, list[str]]:
    step_id, *path = value[REF_KEY].split(".")
    return step_id, path


def iter_references(value: Any) -> Iterator[tuple[str, list[str]]]:
    if is_reference(value):
        yield parse_reference(value)
    elif isinstance(value, Mapping):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_references(v)


def lookup_path(data: Any, path: list[str], reference: str = "") -> Any:
    current = data
    for part in path:
        if isinstance(current, Mapping):
            if part not in current:
                raise ReferenceResolutionError(reference, f"no field '{part}'")
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            try:
                current = current[int(part)]
            except IndexError:
                raise ReferenceResolutionError(reference, f"index {part} out of range") from None
        else:
            raise ReferenceResolutionError(reference, f"cannot index {type(current).__name__} with '{part}'")
    return current


def resolve_value(value: Any, outputs: Mapping[str, Any]) -> Any:
    if is_reference(value):
        step_id, path = parse_reference(value)
        if step_id not in outputs:
            raise ReferenceResolutionError(value[REF_KEY], f"step {step_id} has no output")
        return lookup_path(outputs[step_id], path, value[REF_KEY])
    if isinstance(value, Mapping):
        return {k: resolve_value(v, outputs) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, outputs) for v in value]
    return value


def resolve_parameters(parameters: Mapping[str, Any], outputs: Mapping[str, Any]) -> dict[str, Any]:
    """Substitute every reference with the referenced succeeded step's output."""
    return {name: resolve_value(value, outputs) for name, value in parameters.items()}


def derive_compensation_parameters(
    mapping: Mapping[str, str],
    parameters: Mapping[str, Any],
    output: Any,
) -> dict[str, Any]:
    """Build a compensator's parameters from the forward call's parameters and output.

    Without an explicit mapping the compensator gets the forward parameters
    overlaid with the output fields.
    """
    if not mapping:
        if isinstance(output, Mapping):
            return {**parameters, **output}
        return {**parameters, "output": output}
    sources = {"output": output, "parameters": dict(parameters)}
    derived: dict[str, Any] = {}
    for name, source in mapping.items():
        root, *path = source.split(".")
        if root not in sources:
            raise ReferenceResolutionError(source, "must start with 'output' or 'parameters'")
        derived[name] = lookup_path(sources[root], path, source)
    return derived


def sanitize(value: Any, max_length: int = 200) -> Any:
    """Redact sensitive keys and truncate long strings; safe to log or audit."""
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else sanitize(v, max_length)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize(v, max_length) for v in value]
    if isinstance(value, str) and len(value) > max_length:
        return value[:max_length] + "…"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return sanitize(str(value), max_length)
