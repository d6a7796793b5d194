"""
Базовый класс бэкенда хранилища и маршрутизация операций
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Generic, List, Optional, TypeVar

from ..exceptions import OperationRoutingError, RegistryNotInitializedError, UnimplementedError
from ..registry import StorageRegistry
from ..schema import CollectionDefinition
from .utils import build_pk_where

logger = logging.getLogger(__name__)

# Имя операции -> метод бэкенда
CORE_OPERATIONS: Dict[str, str] = {
    'createObject': 'create_object',
    'rawCreateObjects': 'raw_create_objects',
    'findObject': 'find_object',
    'findObjects': 'find_objects',
    'countObjects': 'count_objects',
    'updateObject': 'update_object',
    'updateObjects': 'update_objects',
    'deleteObject': 'delete_object',
    'deleteObjects': 'delete_objects',
    'executeBatch': 'execute_batch',
}

COLLECTION_OPERATIONS: FrozenSet[str] = frozenset(CORE_OPERATIONS) - {'executeBatch'}

# Операции верхнего уровня, для которых можно зарегистрировать обработчик
TOP_LEVEL_OPERATIONS: FrozenSet[str] = frozenset(CORE_OPERATIONS) | {'alterSchema'}

BACKEND_FEATURES: FrozenSet[str] = frozenset({
    'executeBatch',
    'createWithRelationships',
    'updateWithRelationships',
    'rawCreateObjects',
    'relationshipFetching',
    'crossRelationshipQueries',
    'count',
    'fullTextSearch',
})

# Операции, доступные только при заявленной поддержке
OPERATION_FEATURES: Dict[str, str] = {
    'executeBatch': 'executeBatch',
    'rawCreateObjects': 'rawCreateObjects',
}


@dataclass(frozen=True)
class OperationIdentifier:
    """Разобранное имя операции вида project:backend.operation"""

    project: Optional[str]
    backend: Optional[str]
    operation: str


def parse_identifier(identifier: str) -> OperationIdentifier:
    """
    Разбор имени операции

    Args:
        identifier: Строка вида 'operation', 'backend.operation',
            'project:operation' или 'project:backend.operation'

    Returns:
        OperationIdentifier

    Raises:
        OperationRoutingError: Если имя пустое или некорректное
    """
    project = None
    rest = identifier
    if ':' in rest:
        project, rest = rest.split(':', 1)

    backend = None
    if '.' in rest:
        backend, rest = rest.split('.', 1)

    if not rest or project == '' or backend == '':
        raise OperationRoutingError(f"Некорректное имя операции '{identifier}'")

    return OperationIdentifier(project=project, backend=backend, operation=rest)


def validate_operation_registration(identifier: str, backend: 'StorageBackend') -> bool:
    """
    Проверка, что под этим именем можно зарегистрировать обработчик

    Операции с пространством имен проекта разрешены всегда,
    операции верхнего уровня - только стандартные, операции
    бэкенда - только объявленные в pluggable_operations.

    Raises:
        OperationRoutingError: Если имя нестандартное
    """
    parsed = parse_identifier(identifier)
    if parsed.project:
        return True

    if not parsed.backend:
        if parsed.operation not in TOP_LEVEL_OPERATIONS:
            raise OperationRoutingError(
                f"Нельзя зарегистрировать нестандартную операцию верхнего уровня '{identifier}'"
            )
        return True

    if parsed.backend != backend.type or parsed.operation not in backend.pluggable_operations:
        raise OperationRoutingError(
            f"Нельзя зарегистрировать нестандартную операцию бэкенда '{identifier}'"
        )
    return True


class StorageBackend(ABC):
    """
    Контракт бэкенда хранилища

    Наследник обязан реализовать create_object, find_objects,
    update_objects и delete_objects. Операции над одним объектом
    по умолчанию выражаются через операции над множеством.
    """

    type: str = 'abstract'
    features: FrozenSet[str] = frozenset()
    pluggable_operations: FrozenSet[str] = frozenset()

    def __init__(self):
        self.registry: Optional[StorageRegistry] = None
        self._operations: Dict[str, Callable[..., Any]] = {}

    def configure(self, registry: StorageRegistry) -> None:
        """
        Привязка бэкенда к реестру коллекций

        Args:
            registry: Реестр, с которым работает менеджер
        """
        self.registry = registry

    async def migrate(self, database: Optional[str] = None) -> None:
        """Подготовка хранилища под зарегистрированные коллекции"""
        pass

    async def cleanup(self) -> None:
        """Освобождение ресурсов бэкенда"""
        pass

    def supports(self, feature: str) -> bool:
        return feature in self.features

    def use(self, plugin: 'StorageBackendPlugin') -> 'StorageBackend':
        """Установка плагина"""
        plugin.install(self)
        return self

    def register_operation(self, identifier: str, handler: Callable[..., Any]) -> None:
        """
        Регистрация обработчика именованной операции

        Args:
            identifier: Имя операции (см. parse_identifier)
            handler: Функция или корутина, получающая аргументы операции

        Raises:
            OperationRoutingError: Если имя нестандартное
        """
        validate_operation_registration(identifier, self)
        self._operations[identifier] = handler

    async def operation(self, name: str, *args) -> Any:
        """
        Выполнение операции по имени

        Сначала ищется зарегистрированный обработчик, затем для имен
        без пространства имен - метод бэкенда из CORE_OPERATIONS.

        Raises:
            OperationRoutingError: Если операцию некуда направить
        """
        identifier = parse_identifier(name)

        handler = self._operations.get(name)
        if handler is not None:
            logger.debug("Dispatching %s to registered handler", name)
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await result
            return result

        if identifier.project or identifier.backend:
            raise OperationRoutingError(f"Для операции '{name}' не зарегистрирован обработчик")

        method_name = CORE_OPERATIONS.get(identifier.operation)
        if method_name is None:
            raise OperationRoutingError(f"Неизвестная операция '{name}'")

        feature = OPERATION_FEATURES.get(identifier.operation)
        if feature and not self.supports(feature):
            raise OperationRoutingError(
                f"Бэкенд {self.type} не поддерживает операцию '{name}'"
            )

        return await getattr(self, method_name)(*args)

    def get_collection_definition(self, collection: str) -> CollectionDefinition:
        if self.registry is None:
            raise RegistryNotInitializedError(
                f"Бэкенд {self.type} не привязан к реестру, вызовите configure()"
            )
        return self.registry.get_collection(collection)

    @abstractmethod
    async def create_object(self, collection: str, obj: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Создание объекта

        Returns:
            Словарь {'object': созданный объект}
        """

    @abstractmethod
    async def find_objects(self, collection: str, query: Dict[str, Any],
                           options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def update_objects(self, collection: str, query: Dict[str, Any], updates: Dict[str, Any],
                             options: Optional[Dict[str, Any]] = None) -> Any:
        pass

    @abstractmethod
    async def delete_objects(self, collection: str, query: Dict[str, Any],
                             options: Optional[Dict[str, Any]] = None) -> Any:
        pass

    async def find_object(self, collection: str, query: Dict[str, Any],
                          options: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Первый найденный объект или None"""
        objects = await self.find_objects(collection, query, {**(options or {}), 'limit': 1})
        if not objects:
            return None
        return objects[0]

    async def count_objects(self, collection: str, query: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> int:
        return len(await self.find_objects(collection, query, options))

    async def update_object(self, collection: str, obj: Dict[str, Any], updates: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> Any:
        """Обновление одного объекта по его первичному ключу"""
        where = build_pk_where(self.get_collection_definition(collection), obj)
        return await self.update_objects(collection, where, updates, options)

    async def delete_object(self, collection: str, obj: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> Any:
        """Удаление одного объекта по его первичному ключу (с лимитом 1)"""
        where = build_pk_where(self.get_collection_definition(collection), obj)
        return await self.delete_objects(collection, where, {**(options or {}), 'limit': 1})

    async def execute_batch(self, batch: List[Dict[str, Any]]) -> Dict[str, Any]:
        raise UnimplementedError(f"Бэкенд {self.type} не поддерживает executeBatch")

    async def raw_create_objects(self, collection: str, objects: List[Dict[str, Any]],
                                 options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        raise UnimplementedError(f"Бэкенд {self.type} не поддерживает rawCreateObjects")


B = TypeVar('B', bound=StorageBackend)


class StorageBackendPlugin(Generic[B]):
    """Плагин, добавляющий бэкенду именованные операции"""

    def __init__(self):
        self.backend: Optional[B] = None

    def install(self, backend: B) -> None:
        self.backend = backend
