"""
Система отношений между коллекциями (relationships)

Отношение - это размеченное объединение из трех вариантов:

- ChildOf: дочерняя коллекция хранит внешний ключ на родителя,
  у родителя появляется обратный псевдоним со списком детей
- SingleChildOf: то же самое, но у родителя не более одного ребенка
- Connects: симметричная связь многие-ко-многим через коллекцию-связку
"""

from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, Iterable, Optional, Tuple, Union

import inflect

from .exceptions import RelationshipError

CHILD_OF = 'child-of'
SINGLE_CHILD_OF = 'single-child-of'
CONNECTS = 'connects'

_inflect = inflect.engine()


def pluralize(singular: str) -> str:
    """Множественное число для имени коллекции (user -> users)"""
    return _inflect.plural_noun(singular)


@dataclass
class ChildOf:
    """Отношение дочерней коллекции к родительской"""

    kind: ClassVar[str] = CHILD_OF
    single: ClassVar[bool] = False

    target: str
    alias: Optional[str] = None
    field_name: Optional[str] = None
    reverse_alias: Optional[str] = None

    # Заполняются при обработке схемы
    source_collection: Optional[str] = None
    target_collection: Optional[str] = None

    def resolve(self, source_collection: str) -> None:
        """
        Заполнение значений по умолчанию

        Args:
            source_collection: Имя коллекции, в которой объявлено отношение
        """
        self.source_collection = source_collection
        self.target_collection = self.target
        self.alias = self.alias or self.target
        if not self.reverse_alias:
            self.reverse_alias = source_collection if self.single else pluralize(source_collection)
        self.field_name = self.field_name or f"{self.alias}Rel"


@dataclass
class SingleChildOf(ChildOf):
    """Отношение, при котором у родителя не больше одного ребенка"""

    kind: ClassVar[str] = SINGLE_CHILD_OF
    single: ClassVar[bool] = True


@dataclass
class Connects:
    """Связь многие-ко-многим между двумя коллекциями"""

    kind: ClassVar[str] = CONNECTS

    connects: Tuple[str, str]
    aliases: Optional[Tuple[str, str]] = None
    field_names: Optional[Tuple[str, str]] = None
    reverse_aliases: Optional[Tuple[str, str]] = None

    def __post_init__(self):
        if isinstance(self.connects, str) or len(self.connects) != 2:
            raise RelationshipError(
                f"Отношение connects должно связывать ровно две коллекции: {self.connects!r}"
            )
        self.connects = tuple(self.connects)
        for attr in ('aliases', 'field_names', 'reverse_aliases'):
            value = getattr(self, attr)
            if value is not None:
                setattr(self, attr, tuple(value))

    def resolve(self, source_collection: str) -> None:
        """Заполнение псевдонимов, имен полей и обратных псевдонимов"""
        self.aliases = self.aliases or self.connects
        self.field_names = self.field_names or (
            f"{self.aliases[0]}Rel",
            f"{self.aliases[1]}Rel",
        )
        # Обратный псевдоним на каждой стороне - множественное число другой стороны
        self.reverse_aliases = self.reverse_aliases or (
            pluralize(self.connects[1]),
            pluralize(self.connects[0]),
        )


Relationship = Union[ChildOf, SingleChildOf, Connects]


@dataclass(frozen=True)
class RelationshipReference:
    """Ссылка на отношение из описания индекса"""

    relationship: str


_VARIANTS = (
    ('child_of', ChildOf, 'target'),
    ('single_child_of', SingleChildOf, 'target'),
    ('connects', Connects, 'connects'),
)


def parse_relationship(value: Any, collection: Optional[str] = None) -> Relationship:
    """
    Разбор декларативного описания отношения

    Принимает словарь вида {'child_of': 'user', 'reverse_alias': 'emails'}
    или готовый экземпляр отношения (он копируется, исходный объект
    не изменяется).

    Args:
        value: Описание отношения
        collection: Имя коллекции для сообщения об ошибке

    Returns:
        Экземпляр ChildOf, SingleChildOf или Connects

    Raises:
        RelationshipError: Если форма отношения не распознана
    """
    if isinstance(value, (ChildOf, Connects)):
        return replace(value)

    if isinstance(value, dict):
        present = [variant for variant in _VARIANTS if value.get(variant[0])]
        if len(present) == 1:
            key, relationship_cls, target_attr = present[0]
            kwargs = {k: v for k, v in value.items() if k != key}
            kwargs[target_attr] = value[key]
            try:
                return relationship_cls(**kwargs)
            except TypeError as e:
                raise RelationshipError(
                    f"Некорректное отношение {value!r} в коллекции {collection}: {e}"
                ) from e

    raise RelationshipError(
        f"Некорректное отношение {value!r} в коллекции {collection}"
    )


def parse_relationship_reference(value: Any) -> Any:
    """Словарь {'relationship': alias} превращается в RelationshipReference"""
    if isinstance(value, dict) and set(value) == {'relationship'}:
        return RelationshipReference(value['relationship'])
    return value


def is_child_of_relationship(relationship: Any) -> bool:
    return isinstance(relationship, ChildOf)


def is_connects_relationship(relationship: Any) -> bool:
    return isinstance(relationship, Connects)


def is_relationship_reference(value: Any) -> bool:
    return isinstance(value, RelationshipReference)


def is_connects_collection(relationships: Iterable[Relationship]) -> bool:
    """Является ли коллекция связкой многие-ко-многим"""
    return any(is_connects_relationship(relationship) for relationship in relationships)


def get_other_collection_of_connects_relationship(relationship: Connects, this_collection: str) -> str:
    """Имя коллекции на другой стороне связи connects"""
    return relationship.connects[1 if relationship.connects[0] == this_collection else 0]


# Удобные фабрики, аналогичные словарной записи
def child_of(target: str, **kwargs) -> ChildOf:
    """Создание отношения один-ко-многим (дочерняя сторона)"""
    return ChildOf(target=target, **kwargs)


def single_child_of(target: str, **kwargs) -> SingleChildOf:
    """Создание отношения один-к-одному (дочерняя сторона)"""
    return SingleChildOf(target=target, **kwargs)


def connects(first: str, second: str, **kwargs) -> Connects:
    """Создание отношения многие-ко-многим"""
    return Connects(connects=(first, second), **kwargs)


RelationshipsByAlias = Dict[str, Relationship]
