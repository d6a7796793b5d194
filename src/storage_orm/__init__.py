"""
storage-orm: независимый от хранилища слой отображения объектов

Основные компоненты:
- StorageRegistry: Версионированные описания коллекций и граф отношений
- StorageManager: Операции над коллекциями через цепочку middleware
- StorageBackend: Контракт бэкенда хранилища
- dissection: Разбор вложенного createObject на пакет плоских вставок
"""

import logging

from .manager import StorageManager, StorageCollection, COLLECTION_OPERATION_ALIASES
from .registry import StorageRegistry, SchemaHistoryEntry
from .schema import CollectionDefinition, CollectionField, IndexDefinition
from .relationships import (
    ChildOf,
    SingleChildOf,
    Connects,
    RelationshipReference,
    child_of,
    single_child_of,
    connects,
)
from .fields import Field, FieldTypeRegistry, RandomKeyField, UrlField, MediaField, create_default_field_type_registry
from .middleware import StorageMiddleware, MiddlewareContext
from .backend import StorageBackend, StorageBackendPlugin, MemoryStorageBackend
from .dissection import (
    dissect_create_object_operation,
    convert_create_object_dissection_to_batch,
    reconstruct_created_object_from_batch_result,
)
from .operations import OperationRegistry, substitute_operation_placeholders
from .exceptions import (
    StorageORMError,
    SchemaError,
    UnknownCollectionError,
    RelationshipError,
    FieldTypeError,
    RegistryError,
    RegistryNotInitializedError,
    UnsupportedOperationError,
    UnimplementedError,
    InvalidOptionsError,
    QueryError,
    OperationRoutingError,
    DeletionTooBroadError,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
__all__ = [
    "StorageManager",
    "StorageCollection",
    "COLLECTION_OPERATION_ALIASES",
    "StorageRegistry",
    "SchemaHistoryEntry",
    "CollectionDefinition",
    "CollectionField",
    "IndexDefinition",
    "ChildOf",
    "SingleChildOf",
    "Connects",
    "RelationshipReference",
    "child_of",
    "single_child_of",
    "connects",
    "Field",
    "FieldTypeRegistry",
    "RandomKeyField",
    "UrlField",
    "MediaField",
    "create_default_field_type_registry",
    "StorageMiddleware",
    "MiddlewareContext",
    "StorageBackend",
    "StorageBackendPlugin",
    "MemoryStorageBackend",
    "dissect_create_object_operation",
    "convert_create_object_dissection_to_batch",
    "reconstruct_created_object_from_batch_result",
    "OperationRegistry",
    "substitute_operation_placeholders",
    "StorageORMError",
    "SchemaError",
    "UnknownCollectionError",
    "RelationshipError",
    "FieldTypeError",
    "RegistryError",
    "RegistryNotInitializedError",
    "UnsupportedOperationError",
    "UnimplementedError",
    "InvalidOptionsError",
    "QueryError",
    "OperationRoutingError",
    "DeletionTooBroadError",
]
