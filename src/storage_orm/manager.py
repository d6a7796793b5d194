"""
Менеджер хранилища: реестр, бэкенд и цепочка обработчиков
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .backend.base import StorageBackend
from .fields import FieldTypeRegistry
from .middleware import MiddlewareContext, MiddlewareNext, Stage, StorageMiddleware
from .registry import StorageRegistry

logger = logging.getLogger(__name__)

COLLECTION_OPERATION_ALIASES: Dict[str, str] = {
    'findOneObject': 'findObject',
    'findAllObjects': 'findObjects',
    'updateOneObject': 'updateObject',
    'updateAllObjects': 'updateObjects',
    'deleteOneObject': 'deleteObject',
    'deleteAllObjects': 'deleteObjects',
}


class StorageManager:
    """Точка входа для работы с коллекциями"""

    def __init__(
        self,
        backend: StorageBackend,
        middleware: Optional[Sequence[StorageMiddleware]] = None,
        field_types: Optional[FieldTypeRegistry] = None,
    ):
        """
        Инициализация менеджера

        Args:
            backend: Бэкенд хранилища, будет привязан к реестру
            middleware: Обработчики в порядке вызова
            field_types: Реестр пользовательских типов полей
        """
        self.registry = StorageRegistry(field_types=field_types)
        self.backend = backend
        self.backend.configure(self.registry)
        self._middleware: List[StorageMiddleware] = list(middleware or [])

    async def __aenter__(self):
        """Асинхронный контекстный менеджер"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Освобождение ресурсов бэкенда при выходе из контекста"""
        await self.backend.cleanup()

    def set_middleware(self, middleware: Sequence[StorageMiddleware]) -> None:
        self._middleware = list(middleware)

    async def finish_initialization(self) -> None:
        await self.registry.finish_initialization()

    def collection(self, name: str) -> 'StorageCollection':
        """
        Получение интерфейса коллекции

        Args:
            name: Имя коллекции

        Returns:
            StorageCollection
        """
        return StorageCollection(self, name)

    async def operation(self, operation_name: str, *args) -> Any:
        """
        Выполнение операции через цепочку обработчиков

        Цепочка собирается заново при каждом вызове: первый
        зарегистрированный обработчик вызывается первым, последним
        звеном идет backend.operation().

        Args:
            operation_name: Имя операции ('createObject', 'executeBatch', ...)
            *args: Аргументы операции

        Returns:
            Результат операции

        Raises:
            RegistryNotInitializedError: Если реестр еще не инициализирован
        """
        self.registry.ensure_initialized()
        logger.debug("Operation %s", operation_name)

        async def call_backend(operation: List[Any], extra_data: Dict[str, Any]) -> Any:
            return await self.backend.operation(operation[0], *operation[1:])

        stage: Stage = call_backend
        for middleware in reversed(self._middleware):
            stage = _wrap_middleware(middleware, stage)

        return await MiddlewareNext(stage, {}).process([operation_name, *args])


def _wrap_middleware(middleware: StorageMiddleware, next_stage: Stage) -> Stage:
    async def stage(operation: List[Any], extra_data: Dict[str, Any]) -> Any:
        context = MiddlewareContext(
            operation=operation,
            extra_data=extra_data,
            next=MiddlewareNext(next_stage, extra_data),
        )
        return await middleware.process(context)

    return stage


class StorageCollection:
    """Операции над одной коллекцией"""

    def __init__(self, manager: StorageManager, name: str):
        self._manager = manager
        self.name = name

    async def _operation(self, operation_name: str, *args, options: Optional[Dict[str, Any]] = None) -> Any:
        operation_name = COLLECTION_OPERATION_ALIASES.get(operation_name, operation_name)
        if options is not None:
            args = (*args, options)
        return await self._manager.operation(operation_name, self.name, *args)

    async def create_object(self, obj: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Создание объекта, возможно с вложенными дочерними объектами

        Returns:
            {'object': созданный объект со сгенерированными ключами}
        """
        return await self._operation('createObject', obj, options=options)

    async def raw_create_objects(self, objects: List[Dict[str, Any]],
                                 options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Массовая вставка без обработки отношений"""
        return await self._operation('rawCreateObjects', objects, options=options)

    async def find_object(self, query: Dict[str, Any],
                          options: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return await self._operation('findObject', query, options=options)

    async def find_one_object(self, query: Dict[str, Any],
                              options: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return await self._operation('findOneObject', query, options=options)

    async def find_objects(self, query: Dict[str, Any],
                           options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Поиск объектов

        Args:
            query: Условие, например {'field': {'$lt': 3}}
            options: order, limit, skip

        Returns:
            Список найденных объектов
        """
        return await self._operation('findObjects', query, options=options)

    async def find_all_objects(self, query: Dict[str, Any],
                               options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self._operation('findAllObjects', query, options=options)

    async def count_objects(self, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> int:
        return await self._operation('countObjects', query, options=options)

    async def update_object(self, obj: Dict[str, Any], updates: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> Any:
        """Обновление одного объекта по первичному ключу"""
        return await self._operation('updateObject', obj, updates, options=options)

    async def update_one_object(self, obj: Dict[str, Any], updates: Dict[str, Any],
                                options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._operation('updateOneObject', obj, updates, options=options)

    async def update_objects(self, query: Dict[str, Any], updates: Dict[str, Any],
                             options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._operation('updateObjects', query, updates, options=options)

    async def update_all_objects(self, query: Dict[str, Any], updates: Dict[str, Any],
                                 options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._operation('updateAllObjects', query, updates, options=options)

    async def delete_object(self, obj: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Any:
        """Удаление одного объекта по первичному ключу"""
        return await self._operation('deleteObject', obj, options=options)

    async def delete_one_object(self, obj: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._operation('deleteOneObject', obj, options=options)

    async def delete_objects(self, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._operation('deleteObjects', query, options=options)

    async def delete_all_objects(self, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._operation('deleteAllObjects', query, options=options)
