"""
Разбор вложенного createObject на плоские шаги и обратная сборка

Вызов createObject с вложенными дочерними объектами раскладывается на
последовательность вставок в отдельные коллекции. Шаги ссылаются друг
на друга через плейсхолдеры, которые бэкенд при выполнении пакета
заменяет настоящими первичными ключами.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .exceptions import InvalidOptionsError, RelationshipError, UnimplementedError, UnsupportedOperationError
from .registry import StorageRegistry
from .relationships import CHILD_OF, CONNECTS, SINGLE_CHILD_OF

logger = logging.getLogger(__name__)

PathElement = Union[str, int]
BatchOperation = Dict[str, Any]


@dataclass
class DissectionNode:
    """Один плоский шаг создания объекта"""

    placeholder: Any
    collection: str
    # Путь от корня исходного объекта до этого узла
    path: List[PathElement]
    object: Dict[str, Any]
    # Псевдоним отношения -> плейсхолдер родителя
    relations: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateObjectDissection:
    objects: List[DissectionNode]


def dissect_create_object_operation(
    operation: Dict[str, Any],
    registry: StorageRegistry,
    generate_placeholder: Optional[Callable[[], Any]] = None,
) -> CreateObjectDissection:
    """
    Разбор вложенного createObject на плоские шаги

    Обход в глубину, родитель всегда идет раньше своих детей, поэтому
    каждый шаг ссылается только на плейсхолдеры предыдущих шагов.

    Args:
        operation: Словарь {'collection': ..., 'args': объект}
        registry: Инициализированный реестр коллекций
        generate_placeholder: Генератор плейсхолдеров
            (по умолчанию целые числа с 1, общие для всего вызова)

    Returns:
        CreateObjectDissection со списком шагов

    Raises:
        UnknownCollectionError: Если коллекция не зарегистрирована
        UnsupportedOperationError: Если вложенно создаются связи connects
        InvalidOptionsError: Если дочерние объекты переданы не в том виде
    """
    registry.ensure_initialized()
    if generate_placeholder is None:
        generate_placeholder = itertools.count(1).__next__

    nodes: List[DissectionNode] = []

    def dissect(collection: str, obj: Dict[str, Any], relations: Dict[str, Any], path: List[PathElement]) -> None:
        definition = registry.get_collection(collection)
        reverse_relationships = definition.reverse_relationships_by_alias

        lonely_object = {key: value for key, value in obj.items() if key not in reverse_relationships}
        placeholder = generate_placeholder()
        nodes.append(DissectionNode(
            placeholder=placeholder,
            collection=collection,
            path=path,
            object=lonely_object,
            relations=relations,
        ))

        for reverse_alias, relationship in reverse_relationships.items():
            to_create = obj.get(reverse_alias)
            if not to_create:
                continue

            if relationship.kind == CONNECTS:
                raise UnsupportedOperationError(
                    f"Создание связей connects ('{reverse_alias}' коллекции {collection}) "
                    f"через вложенный createObject не поддерживается"
                )
            elif relationship.kind == SINGLE_CHILD_OF:
                check_nested_children(collection, reverse_alias, to_create, single=True)
                dissect(
                    relationship.source_collection,
                    to_create,
                    {relationship.alias: placeholder},
                    path + [reverse_alias],
                )
            elif relationship.kind == CHILD_OF:
                check_nested_children(collection, reverse_alias, to_create, single=False)
                for index, child in enumerate(to_create):
                    dissect(
                        relationship.source_collection,
                        child,
                        {relationship.alias: placeholder},
                        path + [reverse_alias, index],
                    )
            else:
                raise RelationshipError(
                    f"Неизвестный вид отношения '{reverse_alias}' в коллекции {collection}"
                )

    dissect(operation['collection'], operation['args'], {}, [])
    logger.debug("Dissected createObject on %s into %d steps", operation['collection'], len(nodes))
    return CreateObjectDissection(objects=nodes)


def check_nested_children(collection: str, reverse_alias: str, to_create: Any, single: bool) -> None:
    if single and not isinstance(to_create, dict):
        raise InvalidOptionsError(
            f"'{reverse_alias}' коллекции {collection} должен быть объектом, получено {to_create!r}"
        )
    if not single and not isinstance(to_create, (list, tuple)):
        raise InvalidOptionsError(
            f"'{reverse_alias}' коллекции {collection} должен быть списком объектов, получено {to_create!r}"
        )


def ensure_batch_create_supported(dissection: CreateObjectDissection, registry: StorageRegistry) -> None:
    """
    Проверка, что все шаги разбора можно выполнить пакетом

    Вызывается до выполнения пакета, чтобы неподдерживаемая
    операция не оставила в хранилище частично созданных объектов.

    Raises:
        UnimplementedError: Если у коллекции одного из шагов составной первичный ключ
    """
    for node in dissection.objects:
        if not isinstance(registry.get_collection(node.collection).pk_index, str):
            # TODO: составные ключи в пакетном создании
            raise UnimplementedError(
                f"Пакетное создание объектов коллекции {node.collection} "
                f"с составным первичным ключом не поддерживается"
            )


def convert_create_object_dissection_to_batch(dissection: CreateObjectDissection) -> List[BatchOperation]:
    """
    Преобразование разобранной операции в пакет для executeBatch

    Плейсхолдеры передаются строками, каждое отношение шага
    превращается в инструкцию replace для исполнителя пакета.
    """
    return [
        {
            'operation': 'createObject',
            'collection': node.collection,
            'placeholder': str(node.placeholder),
            'args': node.object,
            'replace': [
                {'path': alias, 'placeholder': str(parent_placeholder)}
                for alias, parent_placeholder in node.relations.items()
            ],
        }
        for node in dissection.objects
    ]


def reconstruct_created_object_from_batch_result(
    *,
    obj: Dict[str, Any],
    collection: str,
    storage_registry: StorageRegistry,
    operation_dissection: CreateObjectDissection,
    batch_result_info: Dict[str, Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Подстановка сгенерированных ключей в исходный вложенный объект

    Для каждого шага записывает настоящий первичный ключ по пути узла,
    а в дочерние объекты - ключи их родителей.

    Args:
        obj: Исходный объект (изменяется на месте)
        collection: Коллекция корневого объекта
        storage_registry: Реестр коллекций
        operation_dissection: Результат dissect_create_object_operation
        batch_result_info: info из результата executeBatch,
            {плейсхолдер: {'object': созданный объект}}

    Returns:
        Тот же obj
    """
    nodes = operation_dissection.objects
    if nodes and nodes[0].collection != collection:
        raise InvalidOptionsError(
            f"Разбор операции относится к коллекции {nodes[0].collection}, а не {collection}"
        )

    ensure_batch_create_supported(operation_dissection, storage_registry)

    real_keys: Dict[str, Any] = {}
    for node in nodes:
        pk_index = storage_registry.get_collection(node.collection).pk_index
        placeholder = str(node.placeholder)
        real_key = batch_result_info[placeholder]['object'][pk_index]
        real_keys[placeholder] = real_key

        set_in(obj, [*node.path, pk_index], real_key)
        for alias, parent_placeholder in node.relations.items():
            set_in(obj, [*node.path, alias], real_keys[str(parent_placeholder)])

    return obj


def set_in(obj: Any, path: Sequence[PathElement], value: Any) -> None:
    """
    Запись значения во вложенную структуру по пути

    Args:
        obj: Словарь или список
        path: Последовательность ключей и индексов
        value: Записываемое значение
    """
    if not path:
        raise InvalidOptionsError("Путь для записи не может быть пустым")

    target = obj
    for key in path[:-1]:
        target = target[key]
    target[path[-1]] = value
