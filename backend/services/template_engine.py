"""
Jinja2 environment used for every template body.

Sandboxed, and strict about undefined names so that a missing variable
fails the render instead of producing an empty string.
"""

import json
from typing import Any, Mapping

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

TEMPLATE_TYPES = ("jinja", "netjson")


def _to_bool(value: Any) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _split_list(value: Any) -> list[str]:
    return [p.strip() for p in str(value).split(",") if p.strip()]


def make_environment() -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["bool"] = _to_bool
    env.filters["split_list"] = _split_list
    env.filters["tojson"] = lambda value: json.dumps(value, sort_keys=True)
    return env


_env = make_environment()


def check_syntax(body: str) -> None:
    """Raise ValueError if ``body`` does not parse."""
    try:
        _env.parse(body)
    except TemplateError as e:
        line = getattr(e, "lineno", None)
        where = f" (line {line})" if line else ""
        raise ValueError(f"Template syntax error{where}: {e.message or e}")


def render_body(body: str, context: Mapping[str, Any]) -> str:
    """Render one body. Jinja errors propagate to the caller."""
    return _env.from_string(body).render(**context)


def canonical_json(text: str) -> str:
    """Re-serialize rendered NetJSON so equal documents give equal bytes."""
    document = json.loads(text)
    return json.dumps(document, sort_keys=True, indent=4, ensure_ascii=False) + "\n"
