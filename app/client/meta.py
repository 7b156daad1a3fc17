from typing import Dict, List

from sqlalchemy import Integer, UniqueConstraint, inspect

from app.models.models import MODELS


class ModelInfo:
    """Column, key and relation metadata of one model, read from its mapper."""

    def __init__(self, name: str, model):
        self.name = name
        self.model = model
        self.table = model.__table__
        mapper = inspect(model)

        self.columns = {attr.key: attr.columns[0] for attr in mapper.column_attrs}
        self.primary_key: List[str] = [col.key for col in mapper.primary_key]
        self.relations = {rel.key: rel for rel in mapper.relationships}

        self.unique_fields: List[str] = list(self.primary_key)
        for key, column in self.columns.items():
            if column.unique and key not in self.unique_fields:
                self.unique_fields.append(key)

        self.compound_uniques: Dict[str, List[str]] = {}
        for constraint in self.table.constraints:
            if isinstance(constraint, UniqueConstraint) and len(constraint.columns) > 1:
                name = constraint.name or "_".join(col.key for col in constraint.columns)
                self.compound_uniques[name] = [col.key for col in constraint.columns]

        self.required: List[str] = [
            key for key, column in self.columns.items()
            if not column.nullable
            and column.default is None
            and column.server_default is None
            and not self.is_generated(key)
        ]

    def is_generated(self, key: str) -> bool:
        column = self.columns[key]
        return column.primary_key and len(self.primary_key) == 1 and isinstance(column.type, Integer)

    def pk_column(self):
        return self.columns[self.primary_key[0]]

    def pk_of(self, record: dict):
        return record[self.primary_key[0]]

    def relation_target(self, key: str) -> "ModelInfo":
        return model_info(self.relations[key].mapper.class_)

    def relation_pairs(self, key: str):
        """(local attribute, remote attribute) pairs joining the relation."""
        return [(local.key, remote.key) for local, remote in self.relations[key].local_remote_pairs]

    def __repr__(self):
        return f"<ModelInfo {self.model.__name__}>"


_REGISTRY: Dict[type, ModelInfo] = {}


def model_info(model) -> ModelInfo:
    info = _REGISTRY.get(model)
    if info is None:
        name = next((key for key, value in MODELS.items() if value is model), model.__tablename__)
        info = _REGISTRY[model] = ModelInfo(name, model)
    return info
