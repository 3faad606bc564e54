"""Prompt template rendering on Jinja2, restricted to data substitution.

    {{ field }} / {{ a.b }} / {{ items[0] }}     value at a path
    {{ field | json }}                          value as indented JSON
    {% for item in items %}...{% endfor %}      repeat per element; loop.index0
    {% if field %}...{% else %}...{% endif %}   absent paths are falsy here

Templates run in Jinja's immutable sandbox with globals removed and calls
rejected, and lookups on input values only see keys and indices, never
Python attributes or methods. Any placeholder that does not resolve raises
``TemplateError`` naming the full dotted path (``items.1.amount``), never an
empty string.
"""
from __future__ import annotations
import json
from functools import lru_cache
from typing import Any, Mapping, Optional

from jinja2 import Template, TemplateSyntaxError, Undefined
from jinja2.exceptions import TemplateRuntimeError
from jinja2.sandbox import ImmutableSandboxedEnvironment


class TemplateError(ValueError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


def _join(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)


# Input values carry the dotted path they were reached by.

class _Dict(dict):
    def __init__(self, value: Mapping[str, Any], path: str) -> None:
        super().__init__(value)
        self.path = path


class _List(list):
    def __init__(self, value: Any, path: str) -> None:
        super().__init__(value)
        self.path = path

    def __iter__(self):
        for i, item in enumerate(list.__iter__(self)):
            yield _wrap(item, _join(self.path, i))


class _Str(str):
    def __new__(cls, value: str, path: str) -> "_Str":
        obj = super().__new__(cls, value)
        obj.path = path
        return obj


class _Int(int):
    def __new__(cls, value: int, path: str) -> "_Int":
        obj = super().__new__(cls, value)
        obj.path = path
        return obj


class _Float(float):
    def __new__(cls, value: float, path: str) -> "_Float":
        obj = super().__new__(cls, value)
        obj.path = path
        return obj


_TAGGED = (_Dict, _List, _Str, _Int, _Float)


def _wrap(value: Any, path: str) -> Any:
    # children are wrapped lazily on lookup; bool and None stay as they are
    if isinstance(value, dict):
        return _Dict(value, path)
    if isinstance(value, (list, tuple)):
        return _List(value, path)
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, str):
        return _Str(value, path)
    if isinstance(value, int):
        return _Int(value, path)
    if isinstance(value, float):
        return _Float(value, path)
    return value


class MissingValue(Undefined):
    """Falsy in ``{% if %}``; any other use raises ``TemplateError``."""

    __slots__ = ()

    @property
    def path(self) -> str:
        return self._undefined_name or ""

    def _fail_with_undefined_error(self, *args: Any, **kwargs: Any) -> Any:
        raise TemplateError(f"Unresolved placeholder '{self.path}'", path=self.path)

    __str__ = __iter__ = __len__ = _fail_with_undefined_error
    __eq__ = __ne__ = __hash__ = __contains__ = _fail_with_undefined_error


class PromptEnvironment(ImmutableSandboxedEnvironment):
    """Sandboxed environment whose lookups track the dotted path of every value."""

    def _lookup(self, obj: Any, key: Any, fallback: Any) -> Any:
        if isinstance(obj, MissingValue):
            return self.undefined(name=_join(obj.path, key))
        if isinstance(obj, _TAGGED):
            child = _join(obj.path, key)
            if isinstance(obj, dict) and isinstance(key, str) and key in obj:
                return _wrap(dict.__getitem__(obj, key), child)
            if isinstance(obj, list) and isinstance(key, int) and not isinstance(key, bool) and 0 <= key < len(obj):
                return _wrap(list.__getitem__(obj, key), child)
            return self.undefined(name=child)
        return fallback(obj, key)

    def getattr(self, obj: Any, attribute: str) -> Any:
        return self._lookup(obj, attribute, super().getattr)

    def getitem(self, obj: Any, argument: Any) -> Any:
        return self._lookup(obj, argument, super().getitem)

    def call(self, context: Any, obj: Any, *args: Any, **kwargs: Any) -> Any:
        raise TemplateError("Prompt templates cannot call functions or methods")


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def to_json(value: Any) -> str:
    if isinstance(value, MissingValue):
        value._fail_with_undefined_error()
    return json.dumps(value, ensure_ascii=False, indent=2)


_env = PromptEnvironment(
    undefined=MissingValue,
    finalize=format_value,
    autoescape=False,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)
_env.globals.clear()
_env.filters["json"] = to_json


@lru_cache(maxsize=256)
def compile_template(template: str) -> Template:
    try:
        return _env.from_string(template)
    except TemplateSyntaxError as e:
        raise TemplateError(f"Invalid template (line {e.lineno}): {e.message}") from e


def render(template: str, data: Mapping[str, Any]) -> str:
    """Render ``template`` against ``data``; raises ``TemplateError``."""
    if not isinstance(data, Mapping):
        raise TemplateError("Template data must be an object")
    tpl = compile_template(template)
    try:
        return tpl.render({k: _wrap(v, k) for k, v in data.items()})
    except TemplateRuntimeError as e:
        raise TemplateError(str(e)) from e
