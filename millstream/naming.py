"""Readable names for values."""

from __future__ import annotations

from typing import Any


def struct_name(value: Any) -> str:
    """Return ``str(value)`` if its type defines ``__str__``, else ``module.TypeName``.

    A class passed in place of an instance is named like its instances.
    """
    if isinstance(value, type):
        cls = value
    else:
        cls = type(value)
        if cls.__str__ is not object.__str__:
            return str(value)
    module = cls.__module__.rsplit(".", 1)[-1]
    return f"{module}.{cls.__qualname__}"