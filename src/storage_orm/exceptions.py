"""
Кастомные исключения для storage-orm
"""

from typing import Any, Optional


class StorageORMError(Exception):
    """Базовое исключение для всех ошибок storage-orm"""
    pass


class SchemaError(StorageORMError):
    """Ошибка в описании схемы коллекции"""
    pass


class UnknownCollectionError(SchemaError):
    """Обращение к незарегистрированной коллекции"""

    def __init__(self, collection: str, referenced_by: Optional[str] = None):
        message = f"Неизвестная коллекция: {collection}"
        if referenced_by:
            message += f" (на нее ссылается коллекция {referenced_by})"
        super().__init__(message)
        self.collection = collection
        self.referenced_by = referenced_by


class RelationshipError(SchemaError):
    """Ошибка в отношениях между коллекциями"""
    pass


class FieldTypeError(SchemaError):
    """Для объявленного типа поля не найден обработчик"""
    pass


class RegistryError(StorageORMError):
    """Ошибка жизненного цикла реестра (повторная инициализация и т.д.)"""
    pass


class RegistryNotInitializedError(RegistryError):
    """Операция вызвана до завершения инициализации реестра"""
    pass


class UnsupportedOperationError(StorageORMError):
    """Операция не поддерживается для данной формы данных"""
    pass


class UnimplementedError(StorageORMError):
    """Возможность не реализована бэкендом"""
    pass


class InvalidOptionsError(StorageORMError):
    """Некорректные параметры операции"""
    pass


class QueryError(StorageORMError):
    """Ошибка разбора или выполнения запроса"""
    pass


class OperationRoutingError(StorageORMError):
    """Операцию невозможно направить в бэкенд"""
    pass


class DeletionTooBroadError(StorageORMError):
    """Удаление с лимитом затронуло бы больше объектов, чем разрешено"""

    deletion_too_broad = True

    def __init__(self, collection: str, query: Any, limit: int, actual: int):
        super().__init__(
            f"Запрошено удаление не более {limit} объектов из коллекции {collection}, "
            f"но под условие попадает {actual}. Запрос доступен в атрибуте .query"
        )
        self.collection = collection
        self.query = query
        self.limit = limit
        self.actual = actual
