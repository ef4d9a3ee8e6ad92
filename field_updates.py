"""Explicit partial-update payloads for PATCH handlers.

A key missing from the body leaves the column alone, a key sent as ``null``
clears it, and any other value sets it.
"""

from collections import namedtuple


UNCHANGED = "unchanged"
SET = "set"
CLEAR = "clear"


class FieldUpdate(namedtuple("FieldUpdate", ["state", "value"])):
    __slots__ = ()

    @property
    def is_unchanged(self):
        return self.state == UNCHANGED

    @property
    def is_set(self):
        return self.state == SET

    @property
    def is_clear(self):
        return self.state == CLEAR


class UpdateError(ValueError):
    pass


# Column -> (payload key, nullable, coerce)
Field = namedtuple("Field", ["key", "nullable", "coerce"])


def text(value):
    return str(value).strip()


def optional_text(value):
    return str(value).strip() or None


def raw_text(value):
    return str(value)


def flag(value):
    return str(value).lower() == "true"


def identifier(value):
    if isinstance(value, bool):
        raise ValueError(f"invalid id: {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValueError(f"invalid id: {value!r}") from None


def field(key, nullable=True, coerce=optional_text):
    return Field(key, nullable, coerce)


def parse_updates(data, fields):
    """Build ``{column: FieldUpdate}`` for every column in ``fields``.

    Raises UpdateError when a required column is cleared, set to blank text,
    or when ``coerce`` rejects the value.
    """
    updates = {}
    for column, spec in fields.items():
        if spec.key not in data:
            updates[column] = FieldUpdate(UNCHANGED, None)
            continue
        raw = data.get(spec.key)
        if raw is None:
            if not spec.nullable:
                raise UpdateError(f"{spec.key} cannot be cleared")
            updates[column] = FieldUpdate(CLEAR, None)
            continue
        try:
            value = spec.coerce(raw)
        except ValueError as exc:
            raise UpdateError(str(exc)) from None
        if value is None or value == "":
            if not spec.nullable:
                raise UpdateError(f"{spec.key} cannot be empty")
            updates[column] = FieldUpdate(CLEAR, None)
            continue
        updates[column] = FieldUpdate(SET, value)
    return updates


def parse_new(data, fields, required=(), missing=None):
    """Coerce a create payload with the same rules as ``parse_updates``.

    Null or blank values count as absent. Returns ``{column: value}`` for the
    columns that were sent; raises UpdateError with ``missing`` when a
    ``required`` column ends up absent.
    """
    sent = {k: v for k, v in data.items() if v is not None and v != ""}
    relaxed = {column: spec._replace(nullable=True) for column, spec in fields.items()}
    updates = parse_updates(sent, relaxed)
    values = {column: update.value for column, update in updates.items() if update.is_set}
    for column in required:
        if column not in values:
            raise UpdateError(missing or f"{fields[column].key} is required")
    return values


def apply_updates(obj, updates):
    """Write SET and CLEAR updates onto ``obj``; return the changed columns."""
    changed = []
    for column, update in updates.items():
        if update.is_unchanged:
            continue
        setattr(obj, column, update.value)
        changed.append(column)
    return changed
