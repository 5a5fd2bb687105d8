"""
Naming conventions shared by the model layer.

- ``underscore("isPrivate")``   -> ``"is_private"``   (column names)
- ``pluralize("tag_map")``      -> ``"tag_maps"``     (table names)
- ``singularize("categories")`` -> ``"category"``
- ``classify("tag_maps")``      -> ``"TagMap"``       (association targets)
"""

import re

_FIRST_CAP_RE = re.compile(r"(.)([A-Z][a-z]+)")
_ALL_CAP_RE = re.compile(r"([a-z0-9])([A-Z])")

_IRREGULAR = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "datum": "data",
}
_IRREGULAR_SINGULAR = {plural: singular for singular, plural in _IRREGULAR.items()}
_UNCOUNTABLE = frozenset({"data", "info", "information", "series", "species", "news"})


def underscore(name: str) -> str:
    """
    Convert a camelCase / PascalCase identifier to snake_case.

    Already snake_cased names pass through unchanged.
    """
    name = _FIRST_CAP_RE.sub(r"\1_\2", name)
    name = _ALL_CAP_RE.sub(r"\1_\2", name)
    return name.replace("-", "_").lower()


def pluralize(word: str) -> str:
    """Pluralize the last segment of a snake_case word."""
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""

    if last in _UNCOUNTABLE:
        return word
    if last in _IRREGULAR:
        return prefix + _IRREGULAR[last]
    if re.search(r"[^aeiou]y$", last):
        return prefix + last[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", last):
        return prefix + last + "es"
    return prefix + last + "s"


def singularize(word: str) -> str:
    """Singularize the last segment of a snake_case word."""
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""

    if last in _UNCOUNTABLE:
        return word
    if last in _IRREGULAR_SINGULAR:
        return prefix + _IRREGULAR_SINGULAR[last]
    if last.endswith("ies") and len(last) > 3:
        return prefix + last[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", last):
        return prefix + last[:-2]
    if last.endswith("s") and not last.endswith("ss"):
        return prefix + last[:-1]
    return word


def classify(name: str) -> str:
    """Turn a (possibly plural) relation name into a model class name."""
    singular = singularize(underscore(name))
    return "".join(part.capitalize() for part in singular.split("_") if part)


def table_name_for(class_name: str) -> str:
    """Default table name for a model class: pluralized snake_case."""
    return pluralize(underscore(class_name))
