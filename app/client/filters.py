"""Compile where / order-by arguments into SQLAlchemy expressions."""

from sqlalchemy import and_, false, func, not_, or_, true

from app.client.errors import ValidationError
from app.client.meta import ModelInfo

SCALAR_OPERATORS = {
    "equals", "not", "in", "not_in", "lt", "lte", "gt", "gte",
    "contains", "startswith", "endswith", "mode",
}
TO_MANY_OPERATORS = {"some", "every", "none"}
TO_ONE_OPERATORS = {"is", "is_not"}


def as_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def build_where(info: ModelInfo, where):
    if where is None:
        return true()
    if not isinstance(where, dict):
        raise ValidationError(f"Argument `where` for {info.model.__name__} must be a dict, got {type(where).__name__}")

    clauses = []
    for key, value in where.items():
        if key == "AND":
            clauses.extend(build_where(info, item) for item in as_list(value))
        elif key == "OR":
            clauses.append(or_(false(), *[build_where(info, item) for item in as_list(value)]))
        elif key == "NOT":
            items = as_list(value)
            if items:
                clauses.append(not_(and_(*[build_where(info, item) for item in items])))
        elif key in info.columns:
            clauses.append(scalar_filter(info.columns[key], value, key))
        elif key in info.relations:
            clauses.append(relation_filter(info, key, value))
        elif key in info.compound_uniques:
            fields = info.compound_uniques[key]
            if not isinstance(value, dict) or set(value) != set(fields):
                raise ValidationError(f"Argument `{key}` needs exactly the fields {', '.join(fields)}")
            clauses.append(and_(*[_equals(info.columns[field], value[field]) for field in fields]))
        else:
            raise ValidationError(f"Unknown argument `{key}` in where for model {info.model.__name__}")

    if not clauses:
        return true()
    return and_(*clauses)


def _equals(column, value, insensitive=False):
    if value is None:
        return column.is_(None)
    if insensitive and isinstance(value, str):
        return func.lower(column) == value.lower()
    return column == value


def scalar_filter(column, value, key, insensitive=False):
    if not isinstance(value, dict):
        return _equals(column, value)

    unknown = set(value) - SCALAR_OPERATORS
    if unknown:
        raise ValidationError(f"Unknown filter operator(s) {', '.join(sorted(unknown))} on field `{key}`")
    mode = value.get("mode", "insensitive" if insensitive else "default")
    if mode not in ("default", "insensitive"):
        raise ValidationError(f"Invalid mode `{mode}` on field `{key}`")
    insensitive = mode == "insensitive"

    clauses = []
    for op, operand in value.items():
        if op == "mode":
            continue
        if op == "equals":
            clauses.append(_equals(column, operand, insensitive))
        elif op == "not":
            if isinstance(operand, dict):
                clauses.append(not_(scalar_filter(column, operand, key, insensitive)))
            elif operand is None:
                clauses.append(column.is_not(None))
            else:
                clauses.append(not_(_equals(column, operand, insensitive)))
        elif op in ("in", "not_in"):
            if not isinstance(operand, (list, tuple, set)):
                raise ValidationError(f"Operator `{op}` on field `{key}` expects a list")
            values = list(operand)
            clauses.append(column.in_(values) if op == "in" else column.not_in(values))
        elif op == "lt":
            clauses.append(column < operand)
        elif op == "lte":
            clauses.append(column <= operand)
        elif op == "gt":
            clauses.append(column > operand)
        elif op == "gte":
            clauses.append(column >= operand)
        elif op == "contains":
            method = column.icontains if insensitive else column.contains
            clauses.append(method(operand, autoescape=True))
        elif op == "startswith":
            method = column.istartswith if insensitive else column.startswith
            clauses.append(method(operand, autoescape=True))
        elif op == "endswith":
            method = column.iendswith if insensitive else column.endswith
            clauses.append(method(operand, autoescape=True))

    if not clauses:
        return true()
    return and_(*clauses)


def relation_filter(info: ModelInfo, key: str, value):
    relation = info.relations[key]
    attribute = getattr(info.model, key)
    target = info.relation_target(key)

    if relation.uselist:
        if not isinstance(value, dict) or not value or set(value) - TO_MANY_OPERATORS:
            raise ValidationError(f"Relation filter `{key}` expects some, every or none")
        clauses = []
        for op, nested in value.items():
            condition = build_where(target, nested)
            if op == "some":
                clauses.append(attribute.any(condition))
            elif op == "every":
                clauses.append(not_(attribute.any(not_(condition))))
            else:
                clauses.append(not_(attribute.any(condition)))
        return and_(*clauses)

    if value is None:
        return not_(attribute.has())
    if not isinstance(value, dict):
        raise ValidationError(f"Relation filter `{key}` expects a dict")
    if value and set(value) <= TO_ONE_OPERATORS:
        clauses = []
        for op, nested in value.items():
            if op == "is":
                clauses.append(not_(attribute.has()) if nested is None else attribute.has(build_where(target, nested)))
            else:
                clauses.append(attribute.has() if nested is None else not_(attribute.has(build_where(target, nested))))
        return and_(*clauses)
    return attribute.has(build_where(target, value))


def unique_where(info: ModelInfo, where):
    """Validate a unique where and compile it."""
    if not isinstance(where, dict) or not where:
        raise ValidationError(f"Argument `where` of {info.model.__name__} needs at least one unique field")
    has_unique = any(
        key in where and where[key] is not None and not isinstance(where[key], dict)
        for key in info.unique_fields
    ) or any(key in where for key in info.compound_uniques)
    if not has_unique:
        options = info.unique_fields + list(info.compound_uniques)
        raise ValidationError(
            f"Argument `where` of {info.model.__name__} needs at least one of "
            + ", ".join(f"`{option}`" for option in options)
        )
    return build_where(info, where)


def parse_order_by(info: ModelInfo, order_by):
    """Turn an order-by argument into ``[(field, descending, nulls)]``."""
    terms = []
    for entry in as_list(order_by):
        if not isinstance(entry, dict):
            raise ValidationError("Argument `order_by` entries must be dicts")
        for key, direction in entry.items():
            if key not in info.columns:
                raise ValidationError(f"Unknown field `{key}` in order_by for model {info.model.__name__}")
            nulls = None
            if isinstance(direction, dict):
                nulls = direction.get("nulls")
                direction = direction.get("sort")
            if direction not in ("asc", "desc"):
                raise ValidationError(f"Invalid sort direction `{direction}` for `{key}`")
            if nulls not in (None, "first", "last"):
                raise ValidationError(f"Invalid nulls placement `{nulls}` for `{key}`")
            terms.append((key, direction == "desc", nulls))
    return terms


def with_tiebreaker(info: ModelInfo, terms):
    """Append the primary key so the ordering is total."""
    keys = {term[0] for term in terms}
    return terms + [(key, False, None) for key in info.primary_key if key not in keys]


def order_clauses(info: ModelInfo, terms, reverse=False):
    clauses = []
    for key, descending, nulls in terms:
        column = info.columns[key]
        descending = descending != reverse
        expression = column.desc() if descending else column.asc()
        if nulls:
            if reverse:
                nulls = "last" if nulls == "first" else "first"
            expression = expression.nulls_first() if nulls == "first" else expression.nulls_last()
        clauses.append(expression)
    return clauses


# Databases that sort NULL above every value.
NULLS_SORT_HIGH = {"postgresql", "oracle"}


def nulls_last(descending, nulls, dialect):
    if nulls:
        return nulls == "last"
    return (dialect in NULLS_SORT_HIGH) != descending


def cursor_clause(info: ModelInfo, terms, values: dict, reverse=False, dialect="sqlite"):
    """Rows at or after the cursor row in the (possibly reversed) ordering.

    NULL sort values follow the ``nulls`` placement of each term, or the
    database's own placement when none is given.
    """
    branches = []
    for index, (key, descending, nulls) in enumerate(terms):
        column = info.columns[key]
        prefix = [info.columns[k] == values[k] for k, _, _ in terms[:index]]
        nulls_trail = nulls_last(descending, nulls, dialect) != reverse
        value = values[key]
        if value is None:
            step = false() if nulls_trail else column.is_not(None)
        else:
            step = column < value if descending != reverse else column > value
            if nulls_trail and column.nullable:
                step = or_(step, column.is_(None))
        branches.append(and_(*prefix, step))
    branches.append(and_(*[info.columns[k] == values[k] for k, _, _ in terms]))
    return or_(*branches)
