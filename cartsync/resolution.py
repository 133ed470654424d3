"""
Resolve a client-supplied taxonomy identifier (id, exact name or slug) to an id.
"""
import logging
from typing import Dict, Optional, Type

from sqlalchemy import select
from sqlalchemy.orm import Session

from cartsync.database import Base, Brand, Category, ProductType, Subcategory

logger = logging.getLogger(__name__)

RESOLVABLE: Dict[str, Type[Base]] = {
    "category": Category,
    "brand": Brand,
    "type": ProductType,
    "subcategory": Subcategory,
}


def resolve_identifier(session: Session, model: Type[Base], identifier: str) -> Optional[str]:
    """
    Try the primary key, then the first exact name match, then the slug.

    Returns the id of the first row found, or None.
    """
    if not identifier:
        return None

    row = session.get(model, identifier)
    if row is None:
        row = session.scalars(select(model).where(model.name == identifier).limit(1)).first()
    if row is None:
        row = session.scalars(select(model).where(model.slug == identifier)).first()

    if row is None:
        logger.debug(f"No {model.__tablename__} matches {identifier!r}")
        return None
    return row.id


def resolve_category_id(session: Session, identifier: str) -> Optional[str]:
    return resolve_identifier(session, Category, identifier)


def resolve_brand_id(session: Session, identifier: str) -> Optional[str]:
    return resolve_identifier(session, Brand, identifier)


def resolve_type_id(session: Session, identifier: str) -> Optional[str]:
    return resolve_identifier(session, ProductType, identifier)


def resolve_subcategory_id(session: Session, identifier: str) -> Optional[str]:
    return resolve_identifier(session, Subcategory, identifier)
