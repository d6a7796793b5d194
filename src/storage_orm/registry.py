"""
Реестр коллекций: версии схем и граф отношений
"""

import asyncio
import inspect
import logging
import warnings
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .exceptions import (
    FieldTypeError,
    RegistryError,
    RegistryNotInitializedError,
    RelationshipError,
    SchemaError,
    UnknownCollectionError,
)
from .fields import PRIMITIVE_FIELD_TYPES, FieldTypeRegistry, create_default_field_type_registry
from .relationships import CHILD_OF, CONNECTS, SINGLE_CHILD_OF, RelationshipReference
from .schema import (
    CollectionDefinition,
    CollectionField,
    IndexDefinition,
    IndexSourceField,
    parse_collection_definition,
)

logger = logging.getLogger(__name__)

CollectionDefinitions = Union[Any, Sequence[Any]]
RegistryCollections = Dict[str, CollectionDefinition]


@dataclass
class SchemaHistoryEntry:
    """Состояние всех коллекций на момент одной версии"""

    version: datetime
    collections: RegistryCollections


class StorageRegistry:
    """
    Реестр зарегистрированных коллекций

    Работа с реестром идет в два этапа: сначала регистрируются все
    коллекции (register_collection), затем один раз вызывается
    finish_initialization(), который связывает обратные отношения.
    Обратные связи нельзя построить раньше, так как отношение может
    ссылаться на коллекцию, которая еще не зарегистрирована.
    """

    def __init__(self, field_types: Optional[FieldTypeRegistry] = None):
        """
        Инициализация реестра

        Args:
            field_types: Реестр пользовательских типов полей
                (по умолчанию - со встроенными random-key и url)
        """
        self.collections: RegistryCollections = {}
        self.field_types = field_types if field_types is not None else create_default_field_type_registry()

        self._collection_version_map: Dict[datetime, RegistryCollections] = {}
        self._initialized = False
        self._initialized_listeners: List[Callable[['StorageRegistry'], Any]] = []
        self._registered_collection_listeners: List[Callable[[CollectionDefinition], Any]] = []

    @property
    def initialized(self) -> bool:
        return self._initialized

    def on_initialized(self, callback: Callable[['StorageRegistry'], Any]) -> None:
        """
        Подписка на завершение инициализации

        Args:
            callback: Функция или корутина, принимающая реестр
        """
        self._initialized_listeners.append(callback)

    def on_registered_collection(self, callback: Callable[[CollectionDefinition], Any]) -> None:
        """Подписка на регистрацию коллекции (вызывается синхронно)"""
        self._registered_collection_listeners.append(callback)

    def register_collection(self, name: str, defs: CollectionDefinitions) -> None:
        """
        Регистрация коллекции

        Args:
            name: Имя коллекции
            defs: Одно описание или список описаний разных версий.
                Версии обрабатываются по возрастанию, рабочей
                становится самая поздняя.

        Raises:
            RegistryError: Если реестр уже инициализирован
            SchemaError: Если описание коллекции некорректно
        """
        if self._initialized:
            raise RegistryError(
                f"Нельзя зарегистрировать коллекцию {name} после завершения инициализации"
            )

        if not isinstance(defs, (list, tuple)):
            defs = [defs]

        definitions = sorted(
            (parse_collection_definition(definition, name) for definition in defs),
            key=lambda definition: definition.version,
        )

        for definition in definitions:
            definition.name = name

            self._preprocess_field_types(definition)
            self._auto_assign_collection_pk(definition)
            self._preprocess_collection_relationships(name, definition)
            self._preprocess_collection_indices(name, definition)

            current = self.collections.get(name)
            if current is None or current.version <= definition.version:
                self.collections[name] = definition

            version_collections = self._collection_version_map.setdefault(definition.version, {})
            if name in version_collections:
                logger.warning(
                    "Collection %s version %s registered twice, keeping the last definition",
                    name, definition.version.isoformat(),
                )
            version_collections[name] = definition

            logger.debug("Registered collection %s version %s", name, definition.version.isoformat())

        for listener in self._registered_collection_listeners:
            listener(self.collections[name])

    def register_collections(self, collections: Dict[str, CollectionDefinitions]) -> None:
        """Регистрация нескольких коллекций из словаря {имя: описания}"""
        for name, defs in collections.items():
            self.register_collection(name, defs)

    async def finish_initialization(self) -> None:
        """
        Завершение инициализации

        Связывает обратные отношения и дожидается всех подписчиков
        on_initialized. Вызывается ровно один раз.

        Raises:
            RegistryError: При повторном вызове
        """
        if self._initialized:
            raise RegistryError("Реестр уже инициализирован")

        self._connect_reverse_relationships()
        self._initialized = True
        logger.debug("Registry initialized with %d collections", len(self.collections))

        results = [listener(self) for listener in self._initialized_listeners]
        await asyncio.gather(*[result for result in results if inspect.isawaitable(result)])

    def ensure_initialized(self) -> None:
        """
        Проверка, что реестр готов к выполнению операций

        Raises:
            RegistryNotInitializedError: Если finish_initialization() не вызывался
        """
        if not self._initialized:
            raise RegistryNotInitializedError(
                "Операция вызвана до завершения инициализации реестра, "
                "сначала вызовите finish_initialization()"
            )

    def get_collection(self, name: str) -> CollectionDefinition:
        """
        Получение рабочего определения коллекции

        Raises:
            UnknownCollectionError: Если коллекция не зарегистрирована
        """
        definition = self.collections.get(name)
        if definition is None:
            raise UnknownCollectionError(name)
        return definition

    def get_collections_by_version(self, version: datetime) -> RegistryCollections:
        """
        Получение коллекций, объявленных в конкретной версии

        Args:
            version: Метка версии

        Returns:
            Словарь {имя коллекции: определение}
        """
        return dict(self._collection_version_map.get(version, {}))

    def get_schema_history(self) -> List[SchemaHistoryEntry]:
        """История схемы, отсортированная по возрастанию версий"""
        return [
            SchemaHistoryEntry(version=version, collections=dict(collections))
            for version, collections in sorted(self._collection_version_map.items())
        ]

    @property
    def collection_version_map(self) -> Dict[datetime, RegistryCollections]:
        warnings.warn(
            "StorageRegistry.collection_version_map устарел, используйте get_collections_by_version()",
            DeprecationWarning,
            stacklevel=2,
        )
        return self._collection_version_map

    @property
    def collections_by_version(self) -> Dict[datetime, List[CollectionDefinition]]:
        warnings.warn(
            "StorageRegistry.collections_by_version устарел, используйте get_schema_history()",
            DeprecationWarning,
            stacklevel=2,
        )
        return {
            version: list(collections.values())
            for version, collections in self._collection_version_map.items()
        }

    def _preprocess_field_types(self, definition: CollectionDefinition) -> None:
        """Создание обработчиков для полей с пользовательскими типами"""
        definition.fields_with_custom_type = []

        for field_name, field_def in definition.fields.items():
            field_type = self.field_types.get(field_def.type)
            if field_type is None:
                if field_def.type not in PRIMITIVE_FIELD_TYPES:
                    raise FieldTypeError(
                        f"Для поля {field_name} коллекции {definition.name} "
                        f"не найден обработчик типа '{field_def.type}'"
                    )
                continue

            field_def.field_object = field_type()
            definition.fields_with_custom_type.append(field_name)

    def _auto_assign_collection_pk(self, definition: CollectionDefinition) -> None:
        """Выбор первичного ключа; если его нет - добавляется auto-pk поле id"""
        pk_indices = [index_def for index_def in definition.indices if index_def.pk]
        if len(pk_indices) > 1:
            raise SchemaError(f"У коллекции {definition.name} объявлено несколько первичных ключей")

        if pk_indices:
            definition.pk_index = pk_indices[0].field
        else:
            definition.indices.insert(0, IndexDefinition(field='id', pk=True, unique=True))
            definition.pk_index = 'id'

        if isinstance(definition.pk_index, RelationshipReference):
            raise SchemaError(
                f"Первичный ключ коллекции {definition.name} не может быть отношением "
                f"'{definition.pk_index.relationship}'"
            )

        if isinstance(definition.pk_index, str) and definition.pk_index not in definition.fields:
            definition.fields[definition.pk_index] = CollectionField(type='auto-pk')

    def _preprocess_collection_relationships(self, name: str, definition: CollectionDefinition) -> None:
        """Создание полей и индексов для отношений"""
        definition.relationships_by_alias = {}
        definition.reverse_relationships_by_alias = {}

        for relationship in definition.relationships:
            if relationship.kind == CONNECTS:
                relationship.resolve(name)
                for alias in relationship.aliases:
                    definition.relationships_by_alias[alias] = relationship
                for field_name in relationship.field_names:
                    definition.fields[field_name] = CollectionField(type='foreign-key')
                definition.indices.append(IndexDefinition(field=list(relationship.field_names)))
            elif relationship.kind in (CHILD_OF, SINGLE_CHILD_OF):
                relationship.resolve(name)
                definition.relationships_by_alias[relationship.alias] = relationship
                definition.fields[relationship.field_name] = CollectionField(type='foreign-key')
                definition.indices.append(IndexDefinition(field=relationship.field_name))
            else:
                raise RelationshipError(
                    f"Некорректное отношение {relationship!r} в коллекции {name}"
                )

    def _preprocess_collection_indices(self, name: str, definition: CollectionDefinition) -> None:
        """Пометка всех полей, входящих в индексы, порядковым номером индекса"""

        def flag_field(field_name: str, index_ordinal: int) -> None:
            field_def = definition.fields.get(field_name)
            if field_def is None:
                raise SchemaError(
                    f"Поле {field_name} коллекции {name} помечено как индекс, но такого поля нет"
                )
            field_def.index = index_ordinal

        def flag_index_source(source: IndexSourceField, index_ordinal: int) -> None:
            if isinstance(source, RelationshipReference):
                relationship = definition.relationships_by_alias.get(source.relationship)
                if relationship is None:
                    raise SchemaError(
                        f"Индекс коллекции {name} ссылается на неизвестное отношение '{source.relationship}'"
                    )
                if relationship.kind == CONNECTS:
                    for field_name in relationship.field_names:
                        flag_field(field_name, index_ordinal)
                else:
                    flag_field(relationship.field_name, index_ordinal)
            elif isinstance(source, str):
                flag_field(source, index_ordinal)
            else:
                raise SchemaError(f"Некорректный индекс {source!r} в коллекции {name}")

        for index_ordinal, index_def in enumerate(definition.indices):
            # Составной индекс помечает все свои поля
            sources = index_def.field if isinstance(index_def.field, list) else [index_def.field]
            for source in sources:
                flag_index_source(source, index_ordinal)

    def _connect_reverse_relationships(self) -> None:
        """Второй проход: регистрация обратных псевдонимов на целевых коллекциях"""
        for definition in self.collections.values():
            for relationship in definition.relationships:
                if relationship.kind == CONNECTS:
                    for endpoint, reverse_alias in zip(relationship.connects, relationship.reverse_aliases):
                        target = self._get_relationship_target(endpoint, definition.name)
                        target.reverse_relationships_by_alias[reverse_alias] = relationship
                elif relationship.kind in (CHILD_OF, SINGLE_CHILD_OF):
                    target = self._get_relationship_target(relationship.target_collection, definition.name)
                    target.reverse_relationships_by_alias[relationship.reverse_alias] = relationship
                else:
                    raise RelationshipError(
                        f"Некорректное отношение {relationship!r} в коллекции {definition.name}"
                    )

    def _get_relationship_target(self, target: str, source: str) -> CollectionDefinition:
        definition = self.collections.get(target)
        if definition is None:
            raise UnknownCollectionError(target, referenced_by=source)
        return definition
