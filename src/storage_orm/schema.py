"""
Описание коллекций: поля, индексы, определения версий
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .exceptions import SchemaError
from .fields import Field
from .relationships import (
    Relationship,
    RelationshipReference,
    RelationshipsByAlias,
    parse_relationship,
    parse_relationship_reference,
)

IndexSourceField = Union[str, RelationshipReference]
IndexSourceFields = Union[IndexSourceField, List[IndexSourceField]]


@dataclass
class CollectionField:
    """Поле коллекции"""

    type: str
    optional: bool = False
    field_object: Optional[Field] = None
    # Порядковый номер индекса, в который входит поле
    index: Optional[int] = None


@dataclass
class IndexDefinition:
    """
    Описание индекса

    field указывает на имя поля из fields, на отношение
    (RelationshipReference) или на список таких источников для
    составного индекса. Первичным ключом может быть только один индекс.
    """

    field: IndexSourceFields
    pk: bool = False
    unique: bool = False
    auto_inc: bool = False
    full_text_index_name: Optional[str] = None


@dataclass
class CollectionDefinition:
    """Определение одной версии коллекции"""

    version: datetime
    fields: Dict[str, CollectionField]
    indices: List[IndexDefinition] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    name: Optional[str] = None
    pk_index: Optional[IndexSourceFields] = None
    relationships_by_alias: RelationshipsByAlias = field(default_factory=dict)
    reverse_relationships_by_alias: RelationshipsByAlias = field(default_factory=dict)
    fields_with_custom_type: List[str] = field(default_factory=list)


def _parse_index_source(value: Any) -> IndexSourceFields:
    if isinstance(value, (list, tuple)):
        return [parse_relationship_reference(item) for item in value]
    return parse_relationship_reference(value)


def parse_field(value: Any) -> CollectionField:
    if isinstance(value, CollectionField):
        return replace(value)
    if isinstance(value, dict):
        return CollectionField(**value)
    raise SchemaError(f"Некорректное описание поля: {value!r}")


def parse_index(value: Any) -> IndexDefinition:
    if isinstance(value, IndexDefinition):
        return replace(value, field=_parse_index_source(value.field))
    if isinstance(value, dict):
        kwargs = dict(value)
        kwargs['field'] = _parse_index_source(kwargs.get('field'))
        return IndexDefinition(**kwargs)
    raise SchemaError(f"Некорректное описание индекса: {value!r}")


def parse_collection_definition(value: Any, name: Optional[str] = None) -> CollectionDefinition:
    """
    Разбор декларативного описания версии коллекции

    Args:
        value: Словарь с ключами version, fields, indices, relationships
            или готовый CollectionDefinition
        name: Имя коллекции для сообщений об ошибках

    Returns:
        Новый CollectionDefinition (входные данные не изменяются)

    Raises:
        SchemaError: Если описание некорректно
    """
    if isinstance(value, CollectionDefinition):
        source = {
            'version': value.version,
            'fields': value.fields,
            'indices': value.indices,
            'relationships': value.relationships,
        }
    elif isinstance(value, dict):
        source = value
    else:
        raise SchemaError(f"Некорректное описание коллекции {name}: {value!r}")

    version = source.get('version')
    if not isinstance(version, datetime):
        raise SchemaError(f"У коллекции {name} не указана версия (datetime)")

    try:
        fields = {
            field_name: parse_field(field_def)
            for field_name, field_def in (source.get('fields') or {}).items()
        }
        indices = [parse_index(index_def) for index_def in source.get('indices') or []]
    except TypeError as e:
        raise SchemaError(f"Некорректное описание коллекции {name}: {e}") from e

    relationships = [
        parse_relationship(relationship, name)
        for relationship in source.get('relationships') or []
    ]

    return CollectionDefinition(
        version=version,
        fields=fields,
        indices=indices,
        relationships=relationships,
        name=name,
    )
