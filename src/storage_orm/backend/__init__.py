"""
Бэкенды хранилища
"""

from .base import (
    BACKEND_FEATURES,
    COLLECTION_OPERATIONS,
    CORE_OPERATIONS,
    OperationIdentifier,
    StorageBackend,
    StorageBackendPlugin,
    parse_identifier,
    validate_operation_registration,
)
from .memory import MemoryStorageBackend
from .utils import augment_create_object, build_pk_where, create_object_via_batch, prepare_object_for_storage

__all__ = [
    "BACKEND_FEATURES",
    "COLLECTION_OPERATIONS",
    "CORE_OPERATIONS",
    "OperationIdentifier",
    "StorageBackend",
    "StorageBackendPlugin",
    "parse_identifier",
    "validate_operation_registration",
    "MemoryStorageBackend",
    "augment_create_object",
    "build_pk_where",
    "create_object_via_batch",
    "prepare_object_for_storage",
]
