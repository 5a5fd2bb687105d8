"""
Skeleta Utils Package

- naming: column, table and association naming conventions
"""

from .naming import underscore, pluralize, singularize, classify, table_name_for

__all__ = [
    "underscore",
    "pluralize",
    "singularize",
    "classify",
    "table_name_for",
]
