"""
Реестр заранее описанных операций с подстановкой параметров

Аргументы операции могут содержать строки вида '$name:string$',
которые при выполнении заменяются значениями переменных.
"""

import hashlib
import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List

from .exceptions import InvalidOptionsError

PLACEHOLDER_PATTERN = re.compile(r'^\$(?P<name>[A-Za-z_][A-Za-z0-9_]*):(?P<type>[a-z]+)\$$')

_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    'string': lambda value: isinstance(value, str),
    'int': lambda value: isinstance(value, int) and not isinstance(value, bool),
    'float': lambda value: isinstance(value, float),
    'number': lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    'boolean': lambda value: isinstance(value, bool),
    'json': lambda value: True,
}


@dataclass
class RegisteredOperation:
    type: str
    args: List[Any]


class OperationRegistry:
    """Реестр операций с идентификаторами по содержимому"""

    def __init__(self):
        self._operations: Dict[str, RegisteredOperation] = {}

    def register(self, operation_type: str, *args) -> str:
        """
        Регистрация операции

        Args:
            operation_type: Имя операции, например 'createObject'
            *args: Аргументы, могут содержать плейсхолдеры

        Returns:
            Идентификатор вида 'operation:<sha1>'
        """
        operation = RegisteredOperation(type=operation_type, args=list(args))
        operation_id = self._generate_id(operation)
        self._operations[operation_id] = operation
        return operation_id

    def get(self, operation_id: str) -> RegisteredOperation:
        operation = self._operations.get(operation_id)
        if operation is None:
            raise InvalidOptionsError(f"Операция {operation_id} не зарегистрирована")
        return operation

    def get_all(self) -> Dict[str, RegisteredOperation]:
        return dict(self._operations)

    def _generate_id(self, operation: RegisteredOperation) -> str:
        payload = json.dumps(asdict(operation), sort_keys=True, separators=(',', ':'), default=str)
        return f"operation:{hashlib.sha1(payload.encode('utf-8')).hexdigest()}"


def substitute_operation_placeholders(operation: RegisteredOperation, variables: Dict[str, Any]) -> List[Any]:
    """
    Подстановка значений переменных в аргументы операции

    Args:
        operation: Зарегистрированная операция
        variables: Значения переменных по имени

    Returns:
        Новый список аргументов

    Raises:
        InvalidOptionsError: Если переменная не передана или тип не совпадает
    """

    def substitute(value: Any) -> Any:
        if isinstance(value, str):
            match = PLACEHOLDER_PATTERN.match(value)
            if not match:
                return value
            return _resolve_placeholder(match.group('name'), match.group('type'), variables)
        if isinstance(value, dict):
            return {key: substitute(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [substitute(item) for item in value]
        return value

    return [substitute(arg) for arg in operation.args]


def _resolve_placeholder(name: str, value_type: str, variables: Dict[str, Any]) -> Any:
    check = _TYPE_CHECKS.get(value_type)
    if check is None:
        raise InvalidOptionsError(f"Неизвестный тип '{value_type}' у переменной {name}")
    if name not in variables:
        raise InvalidOptionsError(f"Не передано значение переменной {name}")

    value = variables[name]
    if not check(value):
        raise InvalidOptionsError(f"Переменная {name} должна иметь тип {value_type}, получено {value!r}")
    return value
