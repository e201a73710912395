from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from math import ceil
from typing import Generic, Iterator, TypeVar, Optional, List, Dict, Any
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from staffplan.errors import StorageError

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class Page(Generic[T]):
    """One page of a paginated query."""
    items: List[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 50

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as StorageError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during {operation}: {e}")
        raise StorageError(f"Storage failure during {operation}", {"operation": operation}) from e


class BaseRepository(Generic[T], ABC):
    """Abstract base repository defining CRUD contracts using SQLAlchemy Session."""

    @abstractmethod
    def get(self, session: Session, id: str) -> Optional[T]:
        pass

    @abstractmethod
    def create(self, session: Session, entity: T) -> T:
        pass

    @abstractmethod
    def update(self, session: Session, id: str, updates: Dict[str, Any]) -> Optional[T]:
        pass

    @abstractmethod
    def delete(self, session: Session, id: str) -> Optional[T]:
        pass
