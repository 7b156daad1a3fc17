"""CRUD, filter and aggregate operations for one model."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import Float, Integer, Numeric, and_, delete, false, func, insert, not_, or_, true, update
from sqlalchemy import select as sql_select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.client.errors import RecordNotFoundError, ValidationError
from app.client.filters import (
    as_list,
    build_where,
    cursor_clause,
    order_clauses,
    parse_order_by,
    scalar_filter,
    unique_where,
    with_tiebreaker,
)
from app.client.meta import model_info
from app.client.shape import Shape, load

ATOMIC_OPERATIONS = ("set", "increment", "decrement", "multiply", "divide")
AGGREGATES = {"_count": func.count, "_avg": func.avg, "_sum": func.sum, "_min": func.min, "_max": func.max}


@dataclass
class BatchPayload:
    """Number of rows touched by a multi-row write."""
    count: int


def _is_numeric(column) -> bool:
    return isinstance(column.type, (Integer, Float, Numeric))


class ModelDelegate:
    """Query surface of one model, bound to a client or a transaction."""

    def __init__(self, client, model):
        self._client = client
        self._info = model_info(model)
        self.model = model

    @property
    def name(self) -> str:
        return self._info.name

    def __repr__(self):
        return f"<ModelDelegate {self.model.__name__}>"

    # ---------------------------------------------------------------- helpers

    def _shape(self, select_=None, include=None, omit=None) -> Shape:
        return Shape(self._info, select=select_, include=include, omit=omit, global_omit=self._client._omit)

    def _select(self):
        return sql_select(self.model).execution_options(populate_existing=True)

    def _get_unique(self, session, where):
        return session.scalars(self._select().where(unique_where(self._info, where)).limit(1)).first()

    def _rows_by_pk(self, session, pks):
        if not pks:
            return []
        column = self._info.pk_column()
        rows = session.scalars(self._select().where(column.in_(pks)))
        by_pk = {getattr(row, column.key): row for row in rows}
        return [by_pk[pk] for pk in pks if pk in by_pk]

    def _find_rows(self, session, where=None, order_by=None, cursor=None, take=None, skip=None, distinct=None):
        info = self._info
        if take is not None and not isinstance(take, int):
            raise ValidationError("Argument `take` must be an integer")
        if skip is not None and (not isinstance(skip, int) or skip < 0):
            raise ValidationError("Argument `skip` must be a non-negative integer")

        terms = with_tiebreaker(info, parse_order_by(info, order_by))
        backwards = take is not None and take < 0
        stmt = self._select().where(build_where(info, where))

        if cursor is not None:
            columns = [info.columns[key] for key, _, _ in terms]
            cursor_row = session.execute(sql_select(*columns).where(unique_where(info, cursor))).first()
            if cursor_row is None:
                return []
            values = dict(zip([key for key, _, _ in terms], cursor_row))
            stmt = stmt.where(cursor_clause(
                info, terms, values, reverse=backwards, dialect=session.get_bind().dialect.name,
            ))

        stmt = stmt.order_by(*order_clauses(info, terms, reverse=backwards))
        skip = skip or 0

        if distinct:
            fields = as_list(distinct)
            for field in fields:
                if field not in info.columns:
                    raise ValidationError(f"Unknown field `{field}` in distinct for model {self.model.__name__}")
            seen = set()
            rows = []
            for row in session.scalars(stmt):
                marker = tuple(getattr(row, field) for field in fields)
                if marker not in seen:
                    seen.add(marker)
                    rows.append(row)
            rows = rows[skip:]
            if take is not None:
                rows = rows[:abs(take)]
        else:
            if skip:
                stmt = stmt.offset(skip)
            if take is not None:
                stmt = stmt.limit(abs(take))
            rows = list(session.scalars(stmt))

        if backwards:
            rows.reverse()
        return rows

    def _window(self, session, where=None, order_by=None, cursor=None, take=None, skip=None):
        """Subquery over the rows a read with these arguments would return."""
        info = self._info
        stmt = sql_select(info.table)
        if cursor is None and take is None and not skip:
            return stmt.where(build_where(info, where)).subquery()
        rows = self._find_rows(session, where, order_by, cursor, take, skip)
        pks = [getattr(row, info.primary_key[0]) for row in rows]
        return stmt.where(info.pk_column().in_(pks)).subquery()

    def _scalar_values(self, data, info=None) -> Dict[str, Any]:
        info = info or self._info
        if not isinstance(data, dict):
            raise ValidationError(f"Argument `data` for {info.model.__name__} must be a dict")
        values = {}
        for key, value in data.items():
            if key not in info.columns:
                raise ValidationError(f"Unknown argument `{key}` in data for model {info.model.__name__}")
            values[key] = value
        self._check_required(info, values)
        return values

    @staticmethod
    def _check_required(info, values):
        for key in info.required:
            if values.get(key) is None:
                raise ValidationError(f"Argument `{key}` is missing for model {info.model.__name__}.")

    def _update_value(self, key, value, info=None):
        info = info or self._info
        column = info.columns[key]
        if not isinstance(value, dict):
            return value
        if len(value) != 1 or next(iter(value)) not in ATOMIC_OPERATIONS:
            raise ValidationError(f"Update of `{key}` expects one of {', '.join(ATOMIC_OPERATIONS)}")
        op, operand = next(iter(value.items()))
        if op == "set":
            return operand
        if not _is_numeric(column):
            raise ValidationError(f"Atomic `{op}` is only available on numeric fields, `{key}` is not numeric")
        if op == "increment":
            return column + operand
        if op == "decrement":
            return column - operand
        if op == "multiply":
            return column * operand
        return column / operand

    def _update_values(self, data) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Argument `data` must be a dict")
        values = {}
        for key, value in data.items():
            if key not in self._info.columns:
                raise ValidationError(f"Unknown argument `{key}` in data for model {self.model.__name__}")
            values[key] = self._update_value(key, value)
        return values

    # --------------------------------------------------------- nested writes

    def _create_instance(self, session, info, data):
        if not isinstance(data, dict):
            raise ValidationError(f"Argument `data` for {info.model.__name__} must be a dict")
        values = {}
        to_many = []
        for key, value in data.items():
            if key in info.columns:
                values[key] = value
            elif key in info.relations:
                if not isinstance(value, dict) or not value:
                    raise ValidationError(f"Relation `{key}` expects a dict of nested operations")
                if info.relations[key].uselist:
                    to_many.append((key, value))
                else:
                    values.update(self._resolve_to_one(session, info, key, value))
            else:
                raise ValidationError(f"Unknown argument `{key}` in data for model {info.model.__name__}")
        self._check_required(info, values)

        instance = info.model(**values)
        session.add(instance)
        session.flush()
        for key, value in to_many:
            self._write_to_many(session, info, instance, key, value)
        return instance

    def _resolve_to_one(self, session, info, key, operations, allow_disconnect=False):
        target = info.relation_target(key)
        (local, remote), = info.relation_pairs(key)
        if len(operations) != 1:
            raise ValidationError(f"Relation `{key}` expects exactly one nested operation")
        op, payload = next(iter(operations.items()))

        if op == "connect":
            row = session.scalars(sql_select(target.model).where(unique_where(target, payload))).first()
            if row is None:
                raise RecordNotFoundError(
                    f"No '{target.model.__name__}' record was found for a nested connect on relation '{key}'."
                )
            return {local: getattr(row, remote)}
        if op == "create":
            row = self._create_instance(session, target, payload)
            return {local: getattr(row, remote)}
        if op == "connect_or_create":
            if not isinstance(payload, dict) or set(payload) != {"where", "create"}:
                raise ValidationError("`connect_or_create` expects `where` and `create`")
            row = session.scalars(sql_select(target.model).where(unique_where(target, payload["where"]))).first()
            if row is None:
                row = self._create_instance(session, target, payload["create"])
            return {local: getattr(row, remote)}
        if op == "disconnect" and allow_disconnect:
            if not info.columns[local].nullable:
                raise ValidationError(f"Relation `{key}` is required and cannot be disconnected")
            return {local: None}
        raise ValidationError(f"Unknown nested operation `{op}` on relation `{key}`")

    def _write_to_many(self, session, info, instance, key, operations):
        target = info.relation_target(key)
        (local, remote), = info.relation_pairs(key)
        parent_value = getattr(instance, local)

        for op, payload in operations.items():
            if op == "create":
                for item in as_list(payload):
                    if not isinstance(item, dict):
                        raise ValidationError(f"Nested create on `{key}` expects dicts")
                    self._create_instance(session, target, {**item, remote: parent_value})
            elif op == "create_many":
                if not isinstance(payload, dict) or "data" not in payload:
                    raise ValidationError(f"Nested create_many on `{key}` expects {{'data': [...]}}")
                rows = [{**item, remote: parent_value} for item in as_list(payload["data"])]
                self._insert_rows(session, target, rows, payload.get("skip_duplicates", False))
            elif op in ("connect", "disconnect"):
                if op == "disconnect" and not target.columns[remote].nullable:
                    raise ValidationError(f"Records of `{key}` cannot be disconnected, the relation is required")
                for where in as_list(payload):
                    row = session.scalars(sql_select(target.model).where(unique_where(target, where))).first()
                    if row is None:
                        raise RecordNotFoundError(
                            f"No '{target.model.__name__}' record was found for a nested {op} on relation '{key}'."
                        )
                    setattr(row, remote, parent_value if op == "connect" else None)
            else:
                raise ValidationError(f"Unknown nested operation `{op}` on relation `{key}`")
        session.flush()

    def _apply_update(self, session, row, data):
        info = self._info
        if not isinstance(data, dict):
            raise ValidationError("Argument `data` must be a dict")
        for key, value in data.items():
            if key in info.columns:
                setattr(row, key, self._update_value(key, value))
            elif key in info.relations:
                if not isinstance(value, dict) or not value:
                    raise ValidationError(f"Relation `{key}` expects a dict of nested operations")
                if info.relations[key].uselist:
                    self._write_to_many(session, info, row, key, value)
                else:
                    for local, fk in self._resolve_to_one(session, info, key, value, allow_disconnect=True).items():
                        setattr(row, local, fk)
            else:
                raise ValidationError(f"Unknown argument `{key}` in data for model {self.model.__name__}")
        session.flush()
        session.refresh(row)

    def _insert_rows(self, session, info, rows, skip_duplicates=False) -> List[Any]:
        if not isinstance(rows, (list, tuple)):
            raise ValidationError("Argument `data` must be a list")
        dialect = session.get_bind().dialect.name
        if skip_duplicates and dialect not in ("sqlite", "postgresql"):
            raise ValidationError(f"skip_duplicates is not supported on {dialect}")

        pks = []
        for data in rows:
            values = self._scalar_values(data, info)
            if not skip_duplicates:
                stmt = insert(info.table).values(**values)
            elif dialect == "sqlite":
                stmt = sqlite_insert(info.table).values(**values).on_conflict_do_nothing()
            else:
                stmt = postgresql_insert(info.table).values(**values).on_conflict_do_nothing()
            result = session.execute(stmt)
            if result.rowcount:
                pk = result.inserted_primary_key
                if pk is not None and pk[0] is not None:
                    pks.append(pk[0])
        return pks

    # ------------------------------------------------------------------ reads

    def find_unique(self, where, select=None, include=None, omit=None) -> Optional[dict]:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            row = self._get_unique(session, where)
            if row is None:
                return None
            return load(session, shape, [row])[0]

    def find_unique_or_throw(self, where, select=None, include=None, omit=None) -> dict:
        record = self.find_unique(where, select=select, include=include, omit=omit)
        if record is None:
            raise RecordNotFoundError(f"No {self.model.__name__} found", meta={"model_name": self.model.__name__})
        return record

    def find_first(self, where=None, order_by=None, cursor=None, take=None, skip=None, distinct=None,
                   select=None, include=None, omit=None) -> Optional[dict]:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            rows = self._find_rows(session, where, order_by, cursor, 1 if take is None else take, skip, distinct)
            if not rows:
                return None
            return load(session, shape, rows[:1])[0]

    def find_first_or_throw(self, where=None, order_by=None, cursor=None, take=None, skip=None, distinct=None,
                            select=None, include=None, omit=None) -> dict:
        record = self.find_first(where, order_by, cursor, take, skip, distinct, select, include, omit)
        if record is None:
            raise RecordNotFoundError(f"No {self.model.__name__} found", meta={"model_name": self.model.__name__})
        return record

    def find_many(self, where=None, order_by=None, cursor=None, take=None, skip=None, distinct=None,
                  select=None, include=None, omit=None) -> List[dict]:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            rows = self._find_rows(session, where, order_by, cursor, take, skip, distinct)
            return load(session, shape, rows)

    # ----------------------------------------------------------------- writes

    def create(self, data, select=None, include=None, omit=None) -> dict:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            instance = self._create_instance(session, self._info, data)
            session.refresh(instance)
            return load(session, shape, [instance])[0]

    def create_many(self, data, skip_duplicates=False) -> BatchPayload:
        with self._client._session_scope() as session:
            pks = self._insert_rows(session, self._info, data, skip_duplicates)
            return BatchPayload(count=len(pks))

    def create_many_and_return(self, data, skip_duplicates=False, select=None, include=None, omit=None) -> List[dict]:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            pks = self._insert_rows(session, self._info, data, skip_duplicates)
            return load(session, shape, self._rows_by_pk(session, pks))

    def update(self, where, data, select=None, include=None, omit=None) -> dict:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            row = self._get_unique(session, where)
            if row is None:
                raise RecordNotFoundError(
                    "Record to update not found.",
                    meta={"model_name": self.model.__name__, "cause": "Record to update not found."},
                )
            self._apply_update(session, row, data)
            return load(session, shape, [row])[0]

    def _matching_condition(self, session, where, limit):
        condition = build_where(self._info, where)
        if limit is None:
            return condition
        if not isinstance(limit, int) or limit < 0:
            raise ValidationError("Argument `limit` must be a non-negative integer")
        column = self._info.pk_column()
        pks = session.scalars(sql_select(column).where(condition).order_by(column).limit(limit)).all()
        return column.in_(pks)

    def update_many(self, where=None, data=None, limit=None) -> BatchPayload:
        with self._client._session_scope() as session:
            values = self._update_values(data or {})
            condition = self._matching_condition(session, where, limit)
            if not values:
                count = session.scalar(sql_select(func.count()).select_from(self._info.table).where(condition))
                return BatchPayload(count=count)
            result = session.execute(update(self._info.table).where(condition).values(**values))
            return BatchPayload(count=result.rowcount)

    def update_many_and_return(self, where=None, data=None, limit=None,
                               select=None, include=None, omit=None) -> List[dict]:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            values = self._update_values(data or {})
            column = self._info.pk_column()
            condition = self._matching_condition(session, where, limit)
            pks = session.scalars(sql_select(column).where(condition).order_by(column)).all()
            if values and pks:
                session.execute(update(self._info.table).where(column.in_(pks)).values(**values))
            return load(session, shape, self._rows_by_pk(session, pks))

    def upsert(self, where, create, update, select=None, include=None, omit=None) -> dict:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            row = self._get_unique(session, where)
            if row is None:
                row = self._create_instance(session, self._info, create)
                session.refresh(row)
            else:
                self._apply_update(session, row, update)
            return load(session, shape, [row])[0]

    def delete(self, where, select=None, include=None, omit=None) -> dict:
        with self._client._session_scope() as session:
            shape = self._shape(select, include, omit)
            row = self._get_unique(session, where)
            if row is None:
                raise RecordNotFoundError(
                    "Record to delete does not exist.",
                    meta={"model_name": self.model.__name__, "cause": "Record to delete does not exist."},
                )
            record = load(session, shape, [row])[0]
            column = self._info.pk_column()
            session.execute(delete(self._info.table).where(column == getattr(row, column.key)))
            session.expunge(row)
            return record

    def delete_many(self, where=None, limit=None) -> BatchPayload:
        with self._client._session_scope() as session:
            condition = self._matching_condition(session, where, limit)
            result = session.execute(delete(self._info.table).where(condition))
            return BatchPayload(count=result.rowcount)

    # ------------------------------------------------------------- statistics

    def count(self, where=None, cursor=None, take=None, skip=None, select=None):
        with self._client._session_scope() as session:
            window = self._window(session, where, None, cursor, take, skip)
            if select is None:
                return session.scalar(sql_select(func.count()).select_from(window))
            if not isinstance(select, dict):
                raise ValidationError("Argument `select` of count must be a dict")
            expressions = []
            for key, flag in select.items():
                if not flag:
                    continue
                if key == "_all":
                    expressions.append(func.count().label(key))
                elif key in self._info.columns:
                    expressions.append(func.count(window.c[key]).label(key))
                else:
                    raise ValidationError(f"Unknown field `{key}` in count select")
            row = session.execute(sql_select(*expressions).select_from(window)).one()
            return dict(row._mapping)

    def _aggregate_expressions(self, source, selectors):
        """Labelled aggregate expressions as ``[(aggregate, field, expression)]``."""
        expressions = []
        for name, spec in selectors.items():
            if spec is None or spec is False:
                continue
            function = AGGREGATES[name]
            if name == "_count" and spec is True:
                expressions.append((name, None, function().label("_count")))
                continue
            if not isinstance(spec, dict):
                raise ValidationError(f"`{name}` expects a dict of fields")
            for key, flag in spec.items():
                if not flag:
                    continue
                if name == "_count" and key == "_all":
                    expressions.append((name, key, function().label("_count___all")))
                    continue
                if key not in self._info.columns:
                    raise ValidationError(f"Unknown field `{key}` in {name}")
                column = source.c[key]
                if name in ("_avg", "_sum") and not _is_numeric(column):
                    raise ValidationError(f"`{name}` is only available on numeric fields, `{key}` is not numeric")
                expressions.append((name, key, function(column).label(f"{name}__{key}")))
        return expressions

    @staticmethod
    def _collect(expressions, mapping):
        result = {}
        for name, key, expression in expressions:
            value = mapping[expression.name]
            if key is None:
                result[name] = value
            else:
                result.setdefault(name, {})[key] = value
        return result

    def aggregate(self, where=None, order_by=None, cursor=None, take=None, skip=None,
                  _count=None, _avg=None, _sum=None, _min=None, _max=None) -> Dict[str, Any]:
        selectors = {"_count": _count, "_avg": _avg, "_sum": _sum, "_min": _min, "_max": _max}
        with self._client._session_scope() as session:
            window = self._window(session, where, order_by, cursor, take, skip)
            expressions = self._aggregate_expressions(window, selectors)
            if not expressions:
                return {}
            row = session.execute(sql_select(*[e for _, _, e in expressions]).select_from(window)).one()
            return self._collect(expressions, row._mapping)

    def _having_clause(self, having, by, table):
        clauses = []
        for key, value in (having or {}).items():
            if key in ("AND", "OR", "NOT"):
                nested = [self._having_clause(item, by, table) for item in as_list(value)]
                if key == "AND":
                    clauses.extend(nested)
                elif key == "OR":
                    clauses.append(or_(false(), *nested))
                elif nested:
                    clauses.append(not_(and_(*nested)))
                continue
            if key not in self._info.columns:
                raise ValidationError(f"Unknown field `{key}` in having")
            column = table.c[key]
            if isinstance(value, dict) and value and set(value) <= set(AGGREGATES):
                for name, condition in value.items():
                    expression = func.count(column) if name == "_count" else AGGREGATES[name](column)
                    clauses.append(scalar_filter(expression, condition, key))
            elif key in by:
                clauses.append(scalar_filter(column, value, key))
            else:
                raise ValidationError(f"Field `{key}` used in having must be in `by` or wrapped in an aggregate")
        if not clauses:
            return true()
        return and_(*clauses)

    def group_by(self, by, where=None, having=None, order_by=None, take=None, skip=None,
                 _count=None, _avg=None, _sum=None, _min=None, _max=None) -> List[Dict[str, Any]]:
        info = self._info
        by = as_list(by)
        if not by:
            raise ValidationError("Argument `by` must name at least one field")
        for key in by:
            if key not in info.columns:
                raise ValidationError(f"Unknown field `{key}` in by")
        if (take is not None or skip) and not order_by:
            raise ValidationError("Using `take` or `skip` in group_by requires `order_by`")

        table = info.table
        selectors = {"_count": _count, "_avg": _avg, "_sum": _sum, "_min": _min, "_max": _max}
        expressions = self._aggregate_expressions(table, selectors)
        group_columns = [table.c[key] for key in by]

        stmt = (
            sql_select(*group_columns, *[e for _, _, e in expressions])
            .where(build_where(info, where))
            .group_by(*group_columns)
            .having(self._having_clause(having, by, table))
        )

        ordering = []
        for entry in as_list(order_by):
            if not isinstance(entry, dict):
                raise ValidationError("Argument `order_by` entries must be dicts")
            for key, direction in entry.items():
                if key in AGGREGATES:
                    if not isinstance(direction, dict):
                        raise ValidationError(f"`{key}` in order_by expects {{field: direction}}")
                    for field, field_direction in direction.items():
                        if field not in info.columns:
                            raise ValidationError(f"Unknown field `{field}` in order_by")
                        expression = AGGREGATES[key](table.c[field])
                        ordering.append(expression.desc() if field_direction == "desc" else expression.asc())
                elif key in by:
                    for _, descending, nulls in parse_order_by(info, {key: direction}):
                        ordering.extend(order_clauses(info, [(key, descending, nulls)]))
                else:
                    raise ValidationError(f"Every field used for order_by must be included in by, `{key}` is not")
        if ordering:
            stmt = stmt.order_by(*ordering)
        if skip:
            stmt = stmt.offset(skip)
        if take is not None:
            stmt = stmt.limit(take)

        with self._client._session_scope() as session:
            results = []
            for row in session.execute(stmt):
                mapping = row._mapping
                result = {key: mapping[key] for key in by}
                result.update(self._collect(expressions, mapping))
                results.append(result)
            return results


