"""
Общие утилиты для реализаций бэкендов
"""

import copy
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..dissection import (
    check_nested_children,
    convert_create_object_dissection_to_batch,
    dissect_create_object_operation,
    ensure_batch_create_supported,
    reconstruct_created_object_from_batch_result,
)
from ..exceptions import UnimplementedError, UnsupportedOperationError
from ..registry import StorageRegistry
from ..relationships import CHILD_OF, CONNECTS, SINGLE_CHILD_OF, RelationshipReference
from ..schema import CollectionDefinition
from ..utils.where import build_where, eq

logger = logging.getLogger(__name__)

RawCreateObject = Callable[[str, Dict[str, Any], Optional[Dict[str, Any]]], Awaitable[Dict[str, Any]]]


def build_pk_where(definition: CollectionDefinition, obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Условие поиска объекта по первичному ключу

    Args:
        definition: Определение коллекции
        obj: Объект с заполненным первичным ключом

    Returns:
        {поле: значение} для простого ключа или все поля составного

    Raises:
        UnsupportedOperationError: Если первичный ключ - отношение
    """
    pk_index = definition.pk_index
    if isinstance(pk_index, str):
        return build_where(eq(pk_index, obj.get(pk_index)))

    if isinstance(pk_index, list):
        conditions = []
        for pk_field in pk_index:
            if isinstance(pk_field, RelationshipReference):
                raise UnsupportedOperationError(
                    f"Первичный ключ коллекции {definition.name} содержит отношение "
                    f"'{pk_field.relationship}', операции над одним объектом не поддерживаются"
                )
            conditions.append(eq(pk_field, obj.get(pk_field)))
        return build_where(*conditions)

    raise UnsupportedOperationError(
        f"Неподдерживаемый первичный ключ коллекции {definition.name}: {pk_index!r}"
    )


async def prepare_object_for_storage(definition: CollectionDefinition, obj: Dict[str, Any]) -> Dict[str, Any]:
    """Преобразование полей с пользовательскими типами перед записью (на месте)"""
    for field_name in definition.fields_with_custom_type:
        field_object = definition.fields[field_name].field_object
        value = await field_object.prepare_for_storage(obj.get(field_name))
        if value is not None or field_name in obj:
            obj[field_name] = value
    return obj


def augment_create_object(raw_create_object: RawCreateObject, registry: StorageRegistry):
    """
    Создание объекта вместе с вложенными дочерними объектами без пакетов

    Оборачивает простую вставку в одну коллекцию: дочерние объекты
    создаются рекурсивно сразу после родителя, с подстановкой его
    настоящего ключа. Уже созданные объекты не откатываются при ошибке.

    Args:
        raw_create_object: Корутина вставки (collection, object, options) -> {'object': ...}
        registry: Реестр коллекций

    Returns:
        Корутина с той же сигнатурой
    """

    async def augmented_create_object(collection: str, obj: Dict[str, Any],
                                      options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        definition = registry.get_collection(collection)
        reverse_relationships = definition.reverse_relationships_by_alias

        lonely_object = {key: value for key, value in obj.items() if key not in reverse_relationships}

        # Ссылка на родителя объектом заменяется его ключом
        for alias, relationship in definition.relationships_by_alias.items():
            if relationship.kind not in (CHILD_OF, SINGLE_CHILD_OF):
                continue
            value = lonely_object.get(alias)
            if not isinstance(value, dict):
                continue
            target_pk = registry.get_collection(relationship.target_collection).pk_index
            if isinstance(target_pk, str) and value.get(target_pk) is not None:
                lonely_object[alias] = value[target_pk]

        # Все проверки вложенных данных - до вставки родителя
        nested = []
        for reverse_alias, relationship in reverse_relationships.items():
            to_create = obj.get(reverse_alias)
            if not to_create:
                continue

            if relationship.kind == CONNECTS:
                raise UnsupportedOperationError(
                    f"Создание связей connects ('{reverse_alias}' коллекции {collection}) "
                    f"через вложенный createObject не поддерживается"
                )
            check_nested_children(collection, reverse_alias, to_create, single=relationship.single)
            nested.append((reverse_alias, relationship, to_create))

        pk_index = definition.pk_index
        if nested and not isinstance(pk_index, str):
            raise UnimplementedError(
                f"Вложенное создание детей коллекции {collection} с составным ключом не поддерживается"
            )

        await prepare_object_for_storage(definition, lonely_object)

        result = await raw_create_object(collection, lonely_object, options)
        inserted = result['object']

        for reverse_alias, relationship, to_create in nested:
            children = [to_create] if relationship.single else to_create
            created = []
            for child in children:
                payload = {**child, relationship.alias: inserted[pk_index]}
                child_result = await augmented_create_object(relationship.source_collection, payload)
                created.append(child_result['object'])

            inserted[reverse_alias] = created[0] if relationship.single else created

        return {'object': inserted}

    return augmented_create_object


async def create_object_via_batch(backend: Any, collection: str, obj: Dict[str, Any],
                                  options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Создание вложенного объекта одним пакетом

    Разбирает объект на шаги, выполняет их через backend.execute_batch
    и возвращает копию исходного объекта с подставленными ключами.

    Args:
        backend: Бэкенд с поддержкой executeBatch
        collection: Коллекция корневого объекта
        obj: Создаваемый объект (не изменяется)
        options: Параметры создания (не используются пакетом)

    Returns:
        {'object': объект со всеми сгенерированными ключами}

    Raises:
        UnimplementedError: Если шаг пакета относится к коллекции с составным
            первичным ключом (проверяется до выполнения пакета)
    """
    registry = backend.registry
    obj = copy.deepcopy(obj)

    dissection = dissect_create_object_operation(
        {'operation': 'createObject', 'collection': collection, 'args': obj},
        registry,
    )
    ensure_batch_create_supported(dissection, registry)
    batch = convert_create_object_dissection_to_batch(dissection)
    logger.debug("Executing batch of %d steps for %s", len(batch), collection)

    result = await backend.execute_batch(batch)
    reconstruct_created_object_from_batch_result(
        obj=obj,
        collection=collection,
        storage_registry=registry,
        operation_dissection=dissection,
        batch_result_info=result['info'],
    )
    return {'object': obj}
