"""
Base repository class for data access layer.

The repository pattern provides:
1. Separation of data access logic from business logic
2. Single place for query logic (easier to maintain)
3. Easier testing (can mock repositories)

Example:
    class PickRepository(BaseRepository[Pick]):
        def find_by_game(self, game_id: str) -> List[Pick]:
            return self.db.query(Pick).filter(Pick.game_id == game_id).all()
"""
from abc import ABC
from typing import TypeVar, Generic, Type, Optional, List, Any
from sqlalchemy import func
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Repositories never commit on their own; the calling service owns the
    transaction boundary.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # CRUD Operations
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by primary key."""
        return self.db.get(self.model_type, id)

    def create(self, **kwargs) -> T:
        """
        Create a new record.

        Returns:
            The created record (not yet committed to database)
        """
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def delete(self, instance: T) -> None:
        """Mark a record for deletion."""
        self.db.delete(instance)

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    # ========================================================================
    # Query Builders
    # ========================================================================

    def where(self, *criterion) -> List[T]:
        """Filter records using SQLAlchemy expressions."""
        return self.db.query(self.model_type).filter(*criterion).all()

    def count(self, *criterion) -> int:
        """Count records matching the criteria."""
        query = self.db.query(func.count()).select_from(self.model_type)
        if criterion:
            query = query.filter(*criterion)
        return query.scalar() or 0

    def distinct_values(self, column: str, *criterion) -> List[Any]:
        """Distinct values of one column for matching rows."""
        query = self.db.query(getattr(self.model_type, column)).distinct()
        if criterion:
            query = query.filter(*criterion)
        return [row[0] for row in query.all()]
