"""
Утилиты для условий запросов вида {'field': {'$lt': 3}}
"""

import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Sequence

from ..exceptions import QueryError

OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '$eq': operator.eq,
    '$ne': operator.ne,
    '$lt': operator.lt,
    '$lte': operator.le,
    '$gt': operator.gt,
    '$gte': operator.ge,
    '$in': lambda value, options: value in options,
}


@dataclass
class Condition:
    """Структурированное условие для фильтрации"""
    field: str
    operator: str = '$eq'
    value: Any = None

    def __post_init__(self):
        if self.operator not in OPERATORS:
            raise QueryError(f"Неподдерживаемый оператор {self.operator} для поля {self.field}")

    def matches(self, obj: Dict[str, Any]) -> bool:
        """Проверка объекта на соответствие условию"""
        actual = obj.get(self.field)
        if self.operator == '$eq':
            return actual == self.value
        if self.operator == '$ne':
            return actual != self.value
        if actual is None:
            return False
        try:
            return OPERATORS[self.operator](actual, self.value)
        except TypeError as e:
            raise QueryError(
                f"Невозможно сравнить поле {self.field} ({actual!r}) с {self.value!r}"
            ) from e

    def to_query(self) -> Dict[str, Any]:
        if self.operator == '$eq':
            return {self.field: self.value}
        return {self.field: {self.operator: self.value}}


def parse_where(where: Dict[str, Any]) -> List[Condition]:
    """
    Разбор условия запроса в список Condition

    Args:
        where: {поле: значение} или {поле: {оператор: значение, ...}}

    Returns:
        Список условий, объединяемых через AND
    """
    conditions = []
    for field, value in (where or {}).items():
        if isinstance(value, dict) and value and all(key.startswith('$') for key in value):
            for op, operand in value.items():
                conditions.append(Condition(field, op, operand))
        else:
            conditions.append(Condition(field, '$eq', value))
    return conditions


def matches(obj: Dict[str, Any], where: Dict[str, Any]) -> bool:
    return all(condition.matches(obj) for condition in parse_where(where))


def apply_order(objects: Iterable[Dict[str, Any]], order: Sequence[Sequence[str]]) -> List[Dict[str, Any]]:
    """
    Сортировка по списку [[поле, 'asc'|'desc'], ...]

    Пустые значения идут первыми при сортировке по возрастанию.
    """
    result = list(objects)
    for field, direction in reversed(list(order or [])):
        if direction not in ('asc', 'desc'):
            raise QueryError(f"Неизвестное направление сортировки '{direction}' для поля {field}")
        result.sort(
            key=lambda obj: (obj.get(field) is not None, obj.get(field)),
            reverse=direction == 'desc',
        )
    return result


def build_where(*conditions: Condition) -> Dict[str, Any]:
    """Сборка словаря условий из объектов Condition"""
    where: Dict[str, Any] = {}
    for condition in conditions:
        for field, value in condition.to_query().items():
            existing = where.get(field)
            if isinstance(existing, dict) and isinstance(value, dict):
                existing.update(value)
            else:
                where[field] = value
    return where


def eq(field: str, value: Any) -> Condition:
    """Создание условия равенства"""
    return Condition(field, '$eq', value)
