"""Database session helpers for the repository modules."""

from sqlalchemy.orm import Session


def commit_and_refresh(db: Session, *instances) -> None:
    """Commit the transaction and reload each given instance from the database."""
    db.commit()
    for obj in instances:
        if obj is not None:
            db.refresh(obj)


def add_and_commit(db: Session, instance):
    """Insert a new row, commit, and return it refreshed (ids and defaults populated)."""
    db.add(instance)
    commit_and_refresh(db, instance)
    return instance
