"""
Generic CRUD for reference entities (emergency alerts and contacts).

One repository and one router builder serve every entity; each entity only
supplies its ORM model and Pydantic schemas.
"""

import logging
from typing import Any, List, Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from meshsync.errors import DuplicateKeyError, NotFoundError, StorageError
from meshsync.schemas import DeleteResponse, ErrorResponse
from meshsync.storage import get_db
from meshsync.utils import utc_now_iso

logger = logging.getLogger(__name__)


class EntityRepository:
    """
    Keyed CRUD over one ORM model with an ``id`` primary key.

    ``created_at`` is stamped on insert and ``updated_at`` on every write,
    for models that have those columns.
    """

    def __init__(self, db: Session, model, order_by=None):
        self.db = db
        self.model = model
        self.order_by = order_by

    def _has(self, column: str) -> bool:
        return column in self.model.__table__.columns

    def create(self, values: dict):
        """
        Insert a new entity.

        Raises:
            DuplicateKeyError: If the id is already stored
        """
        now = utc_now_iso()
        entity = self.model(**values)
        if self._has("created_at"):
            entity.created_at = now
        if self._has("updated_at"):
            entity.updated_at = now
        try:
            self.db.add(entity)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateKeyError(values["id"]) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e
        self.db.refresh(entity)
        logger.info(f"{self.model.__tablename__}: created {entity.id}")
        return entity

    def get(self, entity_id: str):
        try:
            return self.db.query(self.model).filter(self.model.id == entity_id).first()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    def list(self, **filters: Any) -> List:
        """List entities matching every non-None filter, exact match."""
        query = self.db.query(self.model)
        for column, value in filters.items():
            if value is not None:
                query = query.filter(getattr(self.model, column) == value)
        if self.order_by is not None:
            query = query.order_by(self.order_by)
        try:
            return query.all()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    def update(self, entity_id: str, values: dict):
        """
        Set fields on a stored entity.

        Raises:
            NotFoundError: If the id is not stored
        """
        entity = self.get(entity_id)
        if entity is None:
            raise NotFoundError(entity_id)
        for column, value in values.items():
            setattr(entity, column, value)
        if self._has("updated_at"):
            entity.updated_at = utc_now_iso()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e
        self.db.refresh(entity)
        logger.info(f"{self.model.__tablename__}: updated {entity_id}")
        return entity

    def delete(self, entity_id: str) -> None:
        """
        Raises:
            NotFoundError: If the id is not stored
        """
        try:
            deleted = self.db.query(self.model).filter(self.model.id == entity_id).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e
        if deleted == 0:
            raise NotFoundError(entity_id)
        logger.info(f"{self.model.__tablename__}: deleted {entity_id}")


def build_crud_router(
    *,
    prefix: str,
    model,
    create_schema: Type[BaseModel],
    response_schema: Type[BaseModel],
    label: str,
    order_by=None,
) -> APIRouter:
    """
    Build create/list/get/delete routes for one entity.

    Args:
        prefix: URL prefix, e.g. "/alerts"
        model: SQLAlchemy model class
        create_schema: Pydantic model for the POST body
        response_schema: Pydantic model rendered from the ORM object
        label: Human name used in error messages, e.g. "Alert"
        order_by: Column expression for list ordering
    """
    router = APIRouter(prefix=prefix, tags=[label])
    not_found = f"{label} not found"

    def repository(db: Session = Depends(get_db)) -> EntityRepository:
        return EntityRepository(db, model, order_by=order_by)

    @router.post(
        "",
        response_model=response_schema,
        status_code=status.HTTP_201_CREATED,
        responses={409: {"model": ErrorResponse, "description": "Id already exists"}},
    )
    async def create_entity(
        payload: create_schema,  # type: ignore[valid-type]
        repo: EntityRepository = Depends(repository),
    ):
        try:
            return repo.create(payload.model_dump())
        except DuplicateKeyError:
            logger.warning(f"{label} already exists: {payload.id}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"{label} already exists"
            )
        except StorageError as e:
            logger.error(f"Failed to store {label.lower()} {payload.id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to store {label.lower()}"
            )

    @router.get("", response_model=list[response_schema])  # type: ignore[valid-type]
    async def list_entities(
        user_id: Optional[str] = Query(None, description="Filter by owning user"),
        repo: EntityRepository = Depends(repository),
    ):
        try:
            return repo.list(user_id=user_id)
        except StorageError as e:
            logger.error(f"Failed to list {label.lower()}s: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to read {label.lower()}s"
            )

    @router.get(
        "/{entity_id}",
        response_model=response_schema,
        responses={404: {"model": ErrorResponse}},
    )
    async def get_entity(entity_id: str, repo: EntityRepository = Depends(repository)):
        try:
            entity = repo.get(entity_id)
        except StorageError as e:
            logger.error(f"Failed to read {label.lower()} {entity_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to read {label.lower()}"
            )
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found)
        return entity

    @router.delete(
        "/{entity_id}",
        response_model=DeleteResponse,
        responses={404: {"model": ErrorResponse}},
    )
    async def delete_entity(entity_id: str, repo: EntityRepository = Depends(repository)):
        try:
            repo.delete(entity_id)
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found)
        except StorageError as e:
            logger.error(f"Failed to delete {label.lower()} {entity_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to delete {label.lower()}"
            )
        return DeleteResponse(deleted_id=entity_id)

    return router
