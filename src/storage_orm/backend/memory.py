"""
Бэкенд, хранящий данные в памяти процесса
"""

import copy
import itertools
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..exceptions import DeletionTooBroadError, InvalidOptionsError
from ..registry import StorageRegistry
from ..utils.where import apply_order, matches
from .base import StorageBackend
from .utils import augment_create_object, create_object_via_batch

logger = logging.getLogger(__name__)

IdGenerator = Callable[[str, Dict[str, Any]], Any]


class MemoryStorageBackend(StorageBackend):
    """
    Хранилище в памяти

    Используется в тестах и там, где не нужна долговременная
    персистентность. При batch=True вложенные объекты создаются одним
    атомарным пакетом, иначе - последовательными вставками.
    """

    type = 'memory'

    def __init__(self, id_generator: Optional[IdGenerator] = None, batch: bool = True):
        """
        Инициализация бэкенда

        Args:
            id_generator: Функция (collection, object) -> ключ для auto-pk полей
                (по умолчанию - счетчик с 1 для каждой коллекции)
            batch: Поддерживать ли executeBatch
        """
        super().__init__()
        features = {'count', 'rawCreateObjects', 'createWithRelationships'}
        if batch:
            features.add('executeBatch')
        self.features = frozenset(features)

        self._id_generator = id_generator
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._counters: Dict[str, Iterator[int]] = {}
        self._augmented_create_object = None

    def configure(self, registry: StorageRegistry) -> None:
        super().configure(registry)
        self._augmented_create_object = augment_create_object(self._raw_create_object, registry)

    async def migrate(self, database: Optional[str] = None) -> None:
        for name in self.registry.collections:
            self._tables.setdefault(name, [])

    async def cleanup(self) -> None:
        self._tables.clear()
        self._counters.clear()

    async def create_object(self, collection: str, obj: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        # Составной ключ нельзя вернуть из пакета, такие объекты создаются одной вставкой
        pk_index = self.get_collection_definition(collection).pk_index
        if self.supports('executeBatch') and isinstance(pk_index, str):
            return await create_object_via_batch(self, collection, obj, options)
        return await self._augmented_create_object(collection, obj, options)

    async def raw_create_objects(self, collection: str, objects: List[Dict[str, Any]],
                                 options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        created = []
        for obj in objects:
            result = await self._raw_create_object(collection, obj, options)
            created.append(result['object'])
        return {'objects': created}

    async def find_objects(self, collection: str, query: Dict[str, Any],
                           options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        options = options or {}
        found = [obj for obj in self._table(collection) if matches(obj, query)]

        if options.get('order'):
            found = apply_order(found, options['order'])

        skip = options.get('skip') or 0
        limit = options.get('limit')
        found = found[skip:] if limit is None else found[skip:skip + limit]

        return [await self._restore_object(collection, copy.deepcopy(obj)) for obj in found]

    async def count_objects(self, collection: str, query: Dict[str, Any],
                            options: Optional[Dict[str, Any]] = None) -> int:
        return sum(1 for obj in self._table(collection) if matches(obj, query))

    async def update_objects(self, collection: str, query: Dict[str, Any], updates: Dict[str, Any],
                             options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        updated = 0
        for obj in self._table(collection):
            if matches(obj, query):
                obj.update(copy.deepcopy(updates))
                updated += 1
        return {'count': updated}

    async def delete_objects(self, collection: str, query: Dict[str, Any],
                             options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = options or {}
        table = self._table(collection)
        to_delete = [obj for obj in table if matches(obj, query)]

        limit = options.get('limit')
        if limit is not None and len(to_delete) > limit:
            raise DeletionTooBroadError(collection, query, limit, len(to_delete))

        table[:] = [obj for obj in table if not any(obj is deleted for deleted in to_delete)]
        return {'count': len(to_delete)}

    async def execute_batch(self, batch: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Атомарное выполнение пакета операций

        Перед каждым шагом поля из replace заменяются ключами объектов,
        созданных шагами с указанными плейсхолдерами. При ошибке
        состояние всех таблиц восстанавливается.

        Returns:
            {'info': {плейсхолдер: {'object': созданный объект}}}
        """
        snapshot = copy.deepcopy(self._tables)
        info: Dict[str, Dict[str, Any]] = {}
        keys: Dict[str, Any] = {}

        try:
            for step in batch:
                await self._execute_batch_step(step, info, keys)
        except Exception:
            logger.debug("Batch failed, restoring %d tables", len(snapshot))
            self._tables = snapshot
            raise

        return {'info': info}

    async def _execute_batch_step(self, step: Dict[str, Any], info: Dict[str, Dict[str, Any]],
                                  keys: Dict[str, Any]) -> None:
        operation = step['operation']
        collection = step['collection']

        if operation == 'createObject':
            target = copy.deepcopy(step['args'])
        elif operation == 'updateObjects':
            target = copy.deepcopy(step['updates'])
        elif operation == 'deleteObjects':
            target = copy.deepcopy(step['where'])
        else:
            raise InvalidOptionsError(f"Операция '{operation}' не поддерживается в пакете")

        for replacement in step.get('replace') or []:
            target[replacement['path']] = keys[str(replacement['placeholder'])]

        if operation == 'createObject':
            result = await self._augmented_create_object(collection, target)
            created = result['object']
            placeholder = step.get('placeholder')
            if placeholder is not None:
                info[str(placeholder)] = {'object': created}
                pk_index = self.get_collection_definition(collection).pk_index
                if isinstance(pk_index, str):
                    keys[str(placeholder)] = created.get(pk_index)
        elif operation == 'updateObjects':
            await self.update_objects(collection, step['where'], target)
        else:
            await self.delete_objects(collection, target)

    async def _raw_create_object(self, collection: str, obj: Dict[str, Any],
                                 options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        definition = self.get_collection_definition(collection)
        stored = copy.deepcopy(obj)

        pk_index = definition.pk_index
        if isinstance(pk_index, str) and definition.fields[pk_index].type == 'auto-pk':
            if stored.get(pk_index) is None:
                stored[pk_index] = self._generate_id(collection, stored)

        self._table(collection).append(stored)
        return {'object': copy.deepcopy(stored)}

    async def _restore_object(self, collection: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        definition = self.get_collection_definition(collection)
        for field_name in definition.fields_with_custom_type:
            if field_name in obj:
                field_object = definition.fields[field_name].field_object
                obj[field_name] = await field_object.prepare_from_storage(obj[field_name])
        return obj

    def _generate_id(self, collection: str, obj: Dict[str, Any]) -> Any:
        if self._id_generator is not None:
            return self._id_generator(collection, obj)
        counter = self._counters.setdefault(collection, itertools.count(1))
        return next(counter)

    def _table(self, collection: str) -> List[Dict[str, Any]]:
        self.get_collection_definition(collection)
        return self._tables.setdefault(collection, [])
