"""
Типы полей коллекций и реестр пользовательских типов
"""

import secrets
from abc import ABC
from typing import Any, Dict, FrozenSet, Optional, Type

PRIMITIVE_FIELD_TYPES: FrozenSet[str] = frozenset({
    'auto-pk',
    'foreign-key',
    'text',
    'json',
    'datetime',
    'timestamp',
    'string',
    'boolean',
    'float',
    'int',
    'number',
    'blob',
    'binary',
})


class Field(ABC):
    """
    Базовый класс пользовательского типа поля

    Наследники задают primitive_type - тип, в котором значение
    хранится в бэкенде, и при необходимости переопределяют
    преобразования при записи и чтении.
    """

    primitive_type: str = 'string'

    async def prepare_for_storage(self, value: Any) -> Any:
        """
        Преобразование значения перед записью в хранилище

        Args:
            value: Значение из объекта (может быть None)

        Returns:
            Значение для записи
        """
        return value

    async def prepare_from_storage(self, stored: Any) -> Any:
        """
        Обратное преобразование значения, прочитанного из хранилища

        Args:
            stored: Значение из хранилища

        Returns:
            Значение для приложения
        """
        return stored


class RandomKeyField(Field):
    """Случайный ключ, генерируется если значение не задано"""

    primitive_type = 'string'
    length = 20

    async def prepare_for_storage(self, value: Any) -> Any:
        if value:
            return value

        return await self.generate_code()

    async def generate_code(self) -> str:
        return secrets.token_hex(self.length)


class UrlField(Field):
    primitive_type = 'string'


class MediaField(Field):
    primitive_type = 'binary'


class FieldTypeRegistry:
    """Реестр пользовательских типов полей"""

    def __init__(self):
        self.field_types: Dict[str, Type[Field]] = {}

    def register_type(self, name: str, field_type: Type[Field]) -> 'FieldTypeRegistry':
        """
        Регистрация типа поля

        Args:
            name: Имя типа, используемое в описании коллекции
            field_type: Класс-обработчик

        Returns:
            self для цепочных вызовов
        """
        self.field_types[name] = field_type
        return self

    def register_types(self, field_types: Dict[str, Type[Field]]) -> 'FieldTypeRegistry':
        """Регистрация нескольких типов сразу"""
        self.field_types.update(field_types)
        return self

    def get(self, name: str) -> Optional[Type[Field]]:
        return self.field_types.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.field_types


def create_default_field_type_registry() -> FieldTypeRegistry:
    """Реестр со встроенными типами random-key и url"""
    registry = FieldTypeRegistry()
    return registry.register_types({
        'random-key': RandomKeyField,
        'url': UrlField,
    })
