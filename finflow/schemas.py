from __future__ import annotations
import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, ValidationError

from .errors import ConfigurationError

# jsonschema keyword -> violation reason
REASONS: Dict[str, str] = {
    "required": "missing",
    "type": "wrong type",
    "enum": "not an allowed value",
    "const": "not an allowed value",
    "additionalProperties": "unexpected field",
    "minLength": "below minimum length",
    "maxLength": "above maximum length",
    "minimum": "below minimum",
    "exclusiveMinimum": "below minimum",
    "maximum": "above maximum",
    "exclusiveMaximum": "above maximum",
    "minItems": "too few items",
    "maxItems": "too many items",
}

STRUCTURAL = {"required", "type", "enum", "const", "additionalProperties"}
MALFORMED = "malformed JSON"

_FENCED = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.S)


@dataclass(frozen=True)
class Violation:
    field: str
    reason: str
    message: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "reason": self.reason, "message": self.message}


@dataclass
class ValidationResult:
    value: Any = None
    violations: List[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


def _path_key(parts: Tuple[Any, ...]) -> Tuple[Tuple[int, Any], ...]:
    # list indices sort numerically, keys alphabetically
    return tuple((0, p) if isinstance(p, int) else (1, str(p)) for p in parts)


def _dotted(parts: Tuple[Any, ...]) -> str:
    return ".".join(str(p) for p in parts)


def _expand(err: ValidationError) -> List[Tuple[Tuple[Any, ...], str, str]]:
    """Turn one jsonschema error into (path, reason, message) triples.

    ``required`` and ``additionalProperties`` are reported by jsonschema on the
    parent object; we point them at the offending field instead.
    """
    base = tuple(err.absolute_path)
    kw = err.validator
    if kw == "required" and isinstance(err.instance, dict):
        missing = [p for p in err.validator_value if p not in err.instance]
        return [(base + (p,), REASONS[kw], f"'{p}' is required") for p in missing]
    if kw == "additionalProperties" and isinstance(err.instance, dict):
        known = set((err.schema or {}).get("properties", {}))
        extra = [k for k in err.instance if k not in known]
        return [(base + (k,), REASONS[kw], f"'{k}' is not an allowed field") for k in extra]
    return [(base, REASONS.get(str(kw), "constraint violated"), err.message)]


def _fill_defaults(value: Any, schema: Dict[str, Any]) -> Any:
    if isinstance(value, dict) and isinstance(schema.get("properties"), dict):
        for name, sub in schema["properties"].items():
            if not isinstance(sub, dict):
                continue
            if name not in value and "default" in sub:
                value[name] = copy.deepcopy(sub["default"])
            elif name in value:
                value[name] = _fill_defaults(value[name], sub)
    elif isinstance(value, list) and isinstance(schema.get("items"), dict):
        return [_fill_defaults(v, schema["items"]) for v in value]
    return value


def check_schema(schema: Dict[str, Any]) -> None:
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise ConfigurationError(f"Invalid schema: {e.message}") from e


class SchemaValidator:
    """Compiled validator for one JSON Schema document.

    ``validate`` never raises for bad values: it returns every violation found,
    structural ones (missing, wrong type, unexpected, enum) before value
    constraints, each group ordered by field path.
    """

    def __init__(self, schema: Dict[str, Any]) -> None:
        check_schema(schema)
        self.schema = schema
        self._validator = Draft202012Validator(schema)

    def validate(self, value: Any) -> ValidationResult:
        found: List[Tuple[int, Tuple[Any, ...], str, str]] = []
        seen = set()
        for err in self._validator.iter_errors(value):
            group = 0 if err.validator in STRUCTURAL else 1
            for path, reason, message in _expand(err):
                if (path, reason) in seen:
                    continue
                seen.add((path, reason))
                found.append((group, path, reason, message))
        if found:
            found.sort(key=lambda f: (f[0], _path_key(f[1])))
            return ValidationResult(None, [Violation(_dotted(p), r, m) for _, p, r, m in found])
        return ValidationResult(_fill_defaults(copy.deepcopy(value), self.schema), [])


def validate(value: Any, schema: Dict[str, Any]) -> ValidationResult:
    return SchemaValidator(schema).validate(value)


def coerce_output(raw: Any) -> Tuple[Any, Optional[Violation]]:
    """Interpret provider output as a JSON value.

    Structured (dict/list) output passes through. Text is unwrapped from a
    Markdown code fence if present and parsed; when the model wrapped the
    object in prose, the outermost ``{...}`` span is tried as a last resort.
    """
    if isinstance(raw, (dict, list)):
        return raw, None
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None, Violation("", MALFORMED, "empty response")
    if not isinstance(raw, str):
        return None, Violation("", MALFORMED, f"unsupported output type {type(raw).__name__}")
    text = raw.strip()
    m = _FENCED.match(text)
    if m:
        text = m.group(1).strip()
    try:
        return json.loads(text), None
    except json.JSONDecodeError as e:
        start, end = text.find("{"), text.rfind("}")
        if 0 <= start < end:
            try:
                return json.loads(text[start:end + 1]), None
            except json.JSONDecodeError:
                pass
        return None, Violation("", MALFORMED, str(e))


def validate_output(raw: Any, validator: SchemaValidator) -> ValidationResult:
    value, problem = coerce_output(raw)
    if problem is not None:
        return ValidationResult(None, [problem])
    return validator.validate(value)
