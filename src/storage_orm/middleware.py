"""
Промежуточные обработчики (middleware) операций хранилища
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

Stage = Callable[[List[Any], Dict[str, Any]], Awaitable[Any]]


class MiddlewareNext:
    """Следующее звено цепочки обработчиков"""

    def __init__(self, stage: Stage, extra_data: Dict[str, Any]):
        self._stage = stage
        self._extra_data = extra_data

    async def process(self, operation: List[Any], extra_data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Передача операции дальше по цепочке

        Args:
            operation: [имя операции, *аргументы]
            extra_data: Дополнительные данные, которые увидят
                следующие обработчики (объединяются с текущими)

        Returns:
            Результат остальной части цепочки
        """
        return await self._stage(operation, {**self._extra_data, **(extra_data or {})})


@dataclass
class MiddlewareContext:
    """Контекст вызова обработчика"""

    operation: List[Any]
    extra_data: Dict[str, Any]
    next: MiddlewareNext


class StorageMiddleware(ABC):
    """
    Базовый класс обработчика

    Обработчик может изменить операцию, вызвать
    context.next.process(...) и обработать результат.
    """

    @abstractmethod
    async def process(self, context: MiddlewareContext) -> Any:
        pass
