"""
Base Data Access Object (DAO) class.

WHY: The DAO pattern separates database operations from business logic,
making the codebase more testable and keeping SQL out of the services.
"""

from typing import Generic, TypeVar, Type, Optional, Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Base Data Access Object providing CRUD operations for all models.

    WHY: Using generics allows type-safe reuse across different models.
    Every tenant-owned model is looked up through get_by_id_and_org so a
    caller cannot reach another organization's rows by guessing ids.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize DAO with model class and database session.

        Args:
            model: The SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            The created model instance with database-generated fields populated

        Raises:
            IntegrityError: If unique constraints are violated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Returns:
            The model instance if found, None otherwise
        """
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_by_id_and_org(self, id: int, org_id: int) -> Optional[ModelType]:
        """
        Retrieve a record by ID, ensuring it belongs to the specified organization.

        Returns:
            The model instance if found and owned by org, None otherwise

        Raises:
            AttributeError: If the model doesn't have an org_id field
        """
        if not hasattr(self.model, "org_id"):
            raise AttributeError(
                f"{self.model.__name__} is not a multi-tenant model (no org_id field)"
            )

        result = await self.session.execute(
            select(self.model).where(
                self.model.id == id,
                self.model.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def update_fields(self, instance: ModelType, **changes: Any) -> ModelType:
        """
        Apply attribute changes to a loaded instance and flush.

        WHY: Going through the ORM unit of work (instead of a bulk UPDATE)
        keeps mapper features such as onupdate timestamps and version
        counters in effect.
        """
        for field, value in changes.items():
            setattr(instance, field, value)
        await self.session.flush()
        return instance
