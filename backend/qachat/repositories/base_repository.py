# backend/qachat/repositories/base_repository.py
"""
Base repository for the messaging core.

Repositories never commit; the service layer owns transaction boundaries
through ``BaseService.transaction()``. Errors from SQLAlchemy are logged
and re-raised as ``RepositoryException``.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Shared lookups for a single model.

    Attributes:
        db: SQLAlchemy session (managed by the service layer)
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def _pk_column(self) -> Any:
        if hasattr(self.model, "id"):
            return getattr(self.model, "id")
        return getattr(self.model, "key")

    def get_by_id(self, id: Any, load_relationships: bool = True) -> Optional[T]:
        """
        Primary-key lookup.

        ``load_relationships=False`` skips the eager loads a subclass
        declares in ``_eager_options``.
        """
        try:
            query = self.db.query(self.model).filter(self._pk_column() == id)
            if load_relationships:
                query = query.options(*self._eager_options())
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding {self.model.__name__} by {sorted(kwargs)}: {str(e)}")
            raise RepositoryException(f"Failed to find {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        """Flush pending changes so ids and constraints resolve inside the transaction."""
        self.db.flush()

    def _eager_options(self) -> List[Any]:
        return []
