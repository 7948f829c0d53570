"""Translation of parsed filter trees into SQLAlchemy expressions.

Only allow-listed columns may be filtered on. The allow-list maps the
logical column name used in the query string to a mapped column, which
is how ``id`` ends up comparing against ``external_uuid``. Values are
always bound as parameters.
"""

from sqlalchemy import and_, false, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from .filters import AND, NONE, OR, Condition, FilterNode
from .identifiers import is_valid_uuid, normalize_uuid


class FilterColumnError(ValueError):
    """Raised for a column that is not in the endpoint's allow-list."""

    def __init__(self, column: str, allowed):
        names = list(allowed)
        if len(names) > 1:
            listed = ", ".join(names[:-1]) + " and " + names[-1]
        else:
            listed = "".join(names)
        super().__init__(
            f"Invalid request parameter: Filter column {column} given, "
            f"only {listed} are allowed"
        )
        self.column = column


class FilterValueError(ValueError):
    """Raised for a value the column cannot be compared with."""


def _like_pattern(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


def _translate_condition(condition: Condition, allowed_columns) -> ColumnElement:
    if condition.column not in allowed_columns:
        raise FilterColumnError(condition.column, allowed_columns)
    column = allowed_columns[condition.column]
    operator, value = condition.operator, condition.value

    if condition.column == "id":
        if not is_valid_uuid(value):
            raise FilterValueError("The given filter id is not a valid UUID")
        value = normalize_uuid(value)

    if value is True:
        return column.is_not(None) if operator == "=" else column.is_(None)

    if operator in ("=", "!=") and "*" in value:
        operator = "~" if operator == "=" else "!~"

    if operator == "=":
        return column == value
    if operator == "!=":
        return or_(column != value, column.is_(None))
    if operator == "~":
        return column.like(_like_pattern(value), escape="\\")
    if operator == "!~":
        return or_(column.not_like(_like_pattern(value), escape="\\"), column.is_(None))
    if operator == "<":
        return column < value
    if operator == "<=":
        return column <= value
    if operator == ">":
        return column > value
    if operator == ">=":
        return column >= value
    raise FilterValueError(f"Unsupported filter operator {operator}")


def translate(node: FilterNode, allowed_columns: dict) -> ColumnElement:
    """
    Build a WHERE expression from a filter tree.

    The input tree is not modified.

    Args:
        node (FilterNode): Parsed filter.
        allowed_columns (dict): Logical column name to mapped column.

    Raises:
        FilterColumnError: If a condition uses a column not in the allow-list.
        FilterValueError: If an ``id`` condition does not carry a valid UUID.

    Returns:
        ColumnElement: Expression usable in ``Select.where()``.
    """
    if isinstance(node, Condition):
        return _translate_condition(node, allowed_columns)

    parts = [translate(child, allowed_columns) for child in node.children]
    if node.kind == AND:
        return and_(*parts) if parts else true()
    if node.kind == OR:
        return or_(*parts) if parts else false()
    if node.kind == NONE:
        return not_(or_(*parts)) if parts else true()
    raise FilterValueError(f"Unsupported filter chain {node.kind}")
