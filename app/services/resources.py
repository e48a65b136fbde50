"""
Resource directory - named links owned by a scope (experience / tenant).
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.helpers import commit_and_refresh
from app.db.models import Resource

logger = logging.getLogger(__name__)

CATEGORY_AFFILIATE = "AFFILIATE"
CATEGORY_MY_PRODUCTS = "MY_PRODUCTS"


def find_resource(db: Session, name: str, scope: str) -> Resource | None:
    """Look up a resource by (name, scope). Names are matched exactly."""
    stmt = select(Resource).where(Resource.name == name, Resource.scope == scope)
    return db.execute(stmt).scalar_one_or_none()


def upsert_resource(
    db: Session,
    name: str,
    scope: str,
    link: str,
    category: str = CATEGORY_AFFILIATE,
) -> Resource:
    """Create the resource or update its link/category in place."""
    resource = find_resource(db, name, scope)
    if resource is None:
        resource = Resource(name=name, scope=scope, link=link, category=category)
        db.add(resource)
    else:
        resource.link = link
        resource.category = category
    commit_and_refresh(db, resource)
    logger.info(f"Resource '{name}' ({scope}) saved: {link}")
    return resource
