"""
Named-placeholder SQL templates.

Templates use ``${name}`` placeholders. Every template declares the keys it
accepts and every value must be one of the types below; anything else (an
unknown key, a missing key, a free-form ``str``) is rejected when the
statement is rendered, long before it reaches the database.

- ``Uid``: an 11 character identifier, rendered as a string literal
- ``Identifier``: a table/column/alias name, rendered double-quoted
- ``Fragment``: SQL built by this package itself, rendered verbatim
- ``int`` / ``datetime`` / ``date``: rendered in a fixed lexical form
"""
from __future__ import annotations
import re
import string
from datetime import date, datetime
from typing import Any, Mapping

from analytics_tables.core.errors import SqlTemplateError
from analytics_tables.core.time import to_long_date

UID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9]{10}$")
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def is_valid_uid(value: Any) -> bool:
    return isinstance(value, str) and bool(UID_PATTERN.match(value))


class Uid(str):
    def __new__(cls, value):
        if not is_valid_uid(value):
            raise SqlTemplateError(f"Not a valid uid: {value!r}")
        return super().__new__(cls, value)


class Identifier(str):
    def __new__(cls, value):
        if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
            raise SqlTemplateError(f"Not a valid identifier: {value!r}")
        return super().__new__(cls, value)


class Fragment(str):
    pass


def render_value(key: str, value: Any) -> str:
    # order matters: bool is an int, the str subclasses are str
    if isinstance(value, Fragment):
        return str(value)
    if isinstance(value, Identifier):
        return f'"{value}"'
    if isinstance(value, Uid):
        return f"'{value}'"
    if isinstance(value, bool):
        raise SqlTemplateError(f"Boolean value for '{key}' must be given as a fragment")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, datetime):
        return f"'{to_long_date(value)}'"
    if isinstance(value, date):
        return f"'{value.isoformat()}'"
    raise SqlTemplateError(
        f"Value for '{key}' has unsupported type {type(value).__name__}"
    )


class SqlTemplate:
    def __init__(self, kind: str, text: str):
        self.kind = kind
        self._template = string.Template(text)
        if not self._template.is_valid():
            raise SqlTemplateError(f"Malformed template '{kind}'")
        self.keys = frozenset(self._template.get_identifiers())

    def render(self, **params: Any) -> str:
        return self.render_map(params)

    def render_map(self, params: Mapping[str, Any]) -> str:
        given = set(params)
        unknown = given - self.keys
        if unknown:
            raise SqlTemplateError(
                f"Template '{self.kind}' does not accept: {', '.join(sorted(unknown))}"
            )
        missing = self.keys - given
        if missing:
            raise SqlTemplateError(
                f"Template '{self.kind}' is missing: {', '.join(sorted(missing))}"
            )
        return self._template.substitute(
            {k: render_value(k, v) for k, v in params.items()}
        )

    def __repr__(self) -> str:
        return f"SqlTemplate({self.kind!r}, keys={sorted(self.keys)})"
