"""Generic repository pattern for type-safe database operations.

This module provides a Generic Repository[T] implementation for SQLModel entities,
enabling type-safe CRUD operations with IDE autocomplete and type checking.

Reference:
    - Repository Pattern: https://martinfowler.com/eaaCatalog/repository.html

Example:
    >>> from mybb2flarum.repository import Repository
    >>> from mybb2flarum.models import TagRow, UserRow
    >>> from sqlmodel import Session
    >>>
    >>> # Create type-safe repositories
    >>> tag_repo = Repository[TagRow](session, TagRow)
    >>> user_repo = Repository[UserRow](session, UserRow)
    >>>
    >>> # Type checker knows these return TagRow | None
    >>> tag = tag_repo.get(10)
    >>> if tag:
    ...     print(f"{tag.name}: {tag.slug}")
"""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlmodel import Session, SQLModel, select

# =============================================================================
# Type Variables
# =============================================================================

T = TypeVar("T", bound=SQLModel)


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Generic repository implementation for SQLModel entities.

    Provides type-safe CRUD operations for any SQLModel entity with:
    - Full type inference (IDE autocomplete, type checking)
    - Consistent interface across all entities
    - Testable with mock repositories

    Every write commits immediately, so a failing row can be rolled back
    without losing the rows written before it.

    Type Parameter:
        T: SQLModel entity type (GroupRow, UserRow, TagRow, etc.)

    Args:
        session: SQLModel Session instance
        model: SQLModel class (e.g., TagRow, UserRow)

    Example:
        >>> tag_repo = Repository[TagRow](session, TagRow)
        >>>
        >>> # Create new tag
        >>> tag = tag_repo.create(TagRow(id=10, name="General", slug="general"))
        >>>
        >>> # Find by attributes
        >>> roots = tag_repo.find_by(parent_id=None)
        >>>
        >>> # Bulk delete with SQL conditions
        >>> removed = tag_repo.delete_where(TagRow.id > 4)
    """

    def __init__(self, session: Session, model: type[T]):
        """Initialize repository.

        Args:
            session: SQLModel Session for database operations
            model: SQLModel class (e.g., TagRow, UserRow)
        """
        self.session = session
        self.model = model

    def get(self, entity_id: Any) -> T | None:
        """Get entity by primary key.

        Args:
            entity_id: Primary key value (a tuple for composite keys)

        Returns:
            Entity instance or None if not found
        """
        return self.session.get(self.model, entity_id)

    def create(self, entity: T) -> T:
        """Create new entity.

        Args:
            entity: Entity instance to create

        Returns:
            Created entity with refreshed state from database

        Example:
            >>> saved = user_repo.create(UserRow(id=2, username="alice", email="a@x"))
            >>> print(f"Created: {saved.id}")
        """
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def update(self, entity: T) -> T:
        """Update existing entity.

        Args:
            entity: Entity instance to update (must exist in database)

        Returns:
            Updated entity with refreshed state from database
        """
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def delete_where(self, *conditions: Any) -> int:
        """Delete every entity matching the SQL conditions.

        With no conditions the whole table is emptied.

        Args:
            *conditions: SQLAlchemy boolean expressions (e.g. ``GroupRow.id > 4``)

        Returns:
            Number of deleted rows

        Example:
            >>> group_repo.delete_where(GroupRow.id > 4)
            3
        """
        stmt = sa_delete(self.model)
        for condition in conditions:
            stmt = stmt.where(condition)
        result = self.session.exec(stmt)  # type: ignore[call-overload]
        self.session.commit()
        # Identity map may still hold deleted rows
        self.session.expire_all()
        return result.rowcount or 0

    def find_by(self, **filters: Any) -> Sequence[T]:
        """Find entities matching filters.

        Supports simple equality filters on entity attributes.

        Args:
            **filters: Keyword arguments for filtering (attribute=value)

        Returns:
            Sequence of matching entities

        Example:
            >>> posts = post_repo.find_by(discussion_id=1)
        """
        stmt = select(self.model)
        for key, value in filters.items():
            if hasattr(self.model, key):
                stmt = stmt.where(getattr(self.model, key) == value)
        return self.session.exec(stmt).all()

    def find_where(self, *conditions: Any, order_by: Any = None) -> Sequence[T]:
        """Find entities matching SQL conditions.

        Args:
            *conditions: SQLAlchemy boolean expressions
            order_by: Optional column or expression to sort by

        Returns:
            Sequence of matching entities

        Example:
            >>> visible = post_repo.find_where(
            ...     PostRow.discussion_id == 1,
            ...     PostRow.hidden_at.is_(None),
            ...     order_by=PostRow.number,
            ... )
        """
        stmt = select(self.model)
        for condition in conditions:
            stmt = stmt.where(condition)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return self.session.exec(stmt).all()

    def count(self, *conditions: Any) -> int:
        """Count entities, optionally restricted by SQL conditions.

        Returns:
            Number of matching entities

        Example:
            >>> total = tag_repo.count()
            >>> general = tag_repo.count(TagRow.slug.startswith("general"))
        """
        stmt = select(func.count()).select_from(self.model)
        for condition in conditions:
            stmt = stmt.where(condition)
        return self.session.exec(stmt).one()

    def exists(self, entity_id: Any) -> bool:
        """Check if entity exists by primary key.

        Args:
            entity_id: Primary key value

        Returns:
            True if exists, False otherwise
        """
        return self.get(entity_id) is not None

    def ids(self, *conditions: Any) -> list[int]:
        """Primary key values of matching entities, ascending.

        Only valid for models with a single integer ``id`` column.
        """
        column = getattr(self.model, "id")
        stmt = select(column)
        for condition in conditions:
            stmt = stmt.where(condition)
        return list(self.session.exec(stmt.order_by(column)).all())


# =============================================================================
# Repository Factory Helper
# =============================================================================


class RepositoryFactory:
    """Factory for creating type-safe repositories.

    Example:
        >>> factory = RepositoryFactory(session)
        >>> tag_repo = factory.for_entity(TagRow)
        >>> user_repo = factory.for_entity(UserRow)
    """

    def __init__(self, session: Session):
        """Initialize repository factory.

        Args:
            session: SQLModel Session for database operations
        """
        self.session = session

    def for_entity(self, model: type[T]) -> Repository[T]:
        """Create repository for specific entity type.

        Args:
            model: SQLModel class (e.g., TagRow, UserRow)

        Returns:
            Type-safe Repository[T] instance
        """
        return Repository[T](self.session, model)


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["Repository", "RepositoryFactory"]
