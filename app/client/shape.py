"""Resolve select / include / omit and turn ORM rows into records.

Relations are loaded with one extra query per relation and level, keyed on
the parent rows of the previous level.
"""

from collections import defaultdict

from sqlalchemy import func, select

from app.client.errors import ValidationError
from app.client.filters import build_where, order_clauses, parse_order_by, with_tiebreaker
from app.client.meta import ModelInfo

TO_MANY_ARGS = {"select", "include", "omit", "where", "order_by", "take", "skip"}
TO_ONE_ARGS = {"select", "include", "omit"}


class Shape:
    def __init__(self, info: ModelInfo, select=None, include=None, omit=None, global_omit=None):
        if select is not None and include is not None:
            raise ValidationError("Please either use `include` or `select`, but not both at the same time.")
        if select is not None and omit is not None:
            raise ValidationError("Please either use `omit` or `select`, but not both at the same time.")

        self.info = info
        self.global_omit = global_omit or {}
        self.relations = {}
        self.counts = None

        omitted = dict(self.global_omit.get(info.name, {}))
        omitted.update(omit or {})
        for key in omitted:
            if key not in info.columns:
                raise ValidationError(f"Unknown field `{key}` in omit for model {info.model.__name__}")

        if select is not None:
            self.scalars = []
            self._read_entries(select, allow_scalars=True)
        else:
            self.scalars = [key for key in info.columns if not omitted.get(key)]
            if include is not None:
                self._read_entries(include, allow_scalars=False)

    def _read_entries(self, entries, allow_scalars):
        if not isinstance(entries, dict):
            raise ValidationError("`select` and `include` must be dicts")
        for key, value in entries.items():
            if key == "_count":
                if value:
                    self.counts = self._read_counts(value)
            elif key in self.info.columns and allow_scalars:
                if value:
                    self.scalars.append(key)
            elif key in self.info.relations:
                if value:
                    self.relations[key] = self._read_relation(key, value)
            else:
                raise ValidationError(f"Unknown field `{key}` for model {self.info.model.__name__}")

    def _read_relation(self, key, value):
        if value is True:
            return {}
        if not isinstance(value, dict):
            raise ValidationError(f"Relation `{key}` expects True or a dict of arguments")
        allowed = TO_MANY_ARGS if self.info.relations[key].uselist else TO_ONE_ARGS
        unknown = set(value) - allowed
        if unknown:
            raise ValidationError(f"Unknown argument(s) {', '.join(sorted(unknown))} for relation `{key}`")
        return value

    def _read_counts(self, value):
        to_many = [key for key, relation in self.info.relations.items() if relation.uselist]
        if value is True:
            return {key: None for key in to_many}
        if not isinstance(value, dict) or set(value) != {"select"}:
            raise ValidationError("`_count` expects True or {'select': {...}}")
        counts = {}
        for key, spec in value["select"].items():
            if key not in to_many:
                raise ValidationError(f"`_count` is only available for to-many relations, got `{key}`")
            if spec is True:
                counts[key] = None
            elif isinstance(spec, dict) and set(spec) <= {"where"}:
                counts[key] = spec.get("where")
            elif spec:
                raise ValidationError(f"Invalid `_count` selection for `{key}`")
        return counts

    def nested(self, key) -> "Shape":
        args = self.relations[key]
        return Shape(
            self.info.relation_target(key),
            select=args.get("select"),
            include=args.get("include"),
            omit=args.get("omit"),
            global_omit=self.global_omit,
        )


def load(session, shape: Shape, rows):
    """Convert ORM rows into shaped records, loading requested relations."""
    records = [{key: getattr(row, key) for key in shape.scalars} for row in rows]
    if not rows:
        return records
    for key in shape.relations:
        _attach_relation(session, shape, rows, records, key)
    if shape.counts:
        _attach_counts(session, shape, rows, records)
    return records


def _attach_relation(session, shape: Shape, rows, records, key):
    info = shape.info
    relation = info.relations[key]
    target = info.relation_target(key)
    args = shape.relations[key]
    (local, remote), = info.relation_pairs(key)

    keys = {getattr(row, local) for row in rows}
    keys.discard(None)

    children = []
    if keys:
        stmt = (
            select(target.model)
            .execution_options(populate_existing=True)
            .where(target.columns[remote].in_(keys))
        )
        if relation.uselist:
            terms = with_tiebreaker(target, parse_order_by(target, args.get("order_by")))
            stmt = stmt.where(build_where(target, args.get("where"))).order_by(*order_clauses(target, terms))
        children = list(session.scalars(stmt))

    child_records = load(session, shape.nested(key), children)
    grouped = defaultdict(list)
    for child, child_record in zip(children, child_records):
        grouped[getattr(child, remote)].append(child_record)

    skip = args.get("skip") or 0
    take = args.get("take")
    for row, record in zip(rows, records):
        matches = grouped.get(getattr(row, local), [])
        if not relation.uselist:
            record[key] = matches[0] if matches else None
            continue
        if take is not None and take < 0:
            # skip counts from the end when reading backwards
            end = max(len(matches) - skip, 0)
            matches = matches[max(end + take, 0):end]
        else:
            matches = matches[skip:]
            if take is not None:
                matches = matches[:take]
        record[key] = matches


def _attach_counts(session, shape: Shape, rows, records):
    info = shape.info
    for record in records:
        record["_count"] = {}
    for key, where in shape.counts.items():
        target = info.relation_target(key)
        (local, remote), = info.relation_pairs(key)
        keys = {getattr(row, local) for row in rows}
        keys.discard(None)
        column = target.columns[remote]
        stmt = (
            select(column, func.count())
            .where(column.in_(keys))
            .where(build_where(target, where))
            .group_by(column)
        )
        counts = dict(session.execute(stmt).all())
        for row, record in zip(rows, records):
            record["_count"][key] = counts.get(getattr(row, local), 0)
