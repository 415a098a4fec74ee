"""SQLAlchemy repository for book stock.

This module provides database persistence for stock quantities using
SQLAlchemy and PostgreSQL. It supports the reservation contract used by the
order service: a read-only bulk availability check, and an atomic bulk
reduction with pessimistic locking that decrements every requested book or
none of them.

The schema consists of a single ``inventory`` table mapping book ids to
their available quantity. The connection URL is read from ``DATABASE_URL``
and otherwise composed from the ``DB_*`` variables.
"""

import os
from contextlib import contextmanager
from typing import Dict, List, Mapping

from sqlalchemy import BigInteger, Integer, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


class Base(DeclarativeBase):
    pass


class Stock(Base):
    """SQLAlchemy model representing available stock for a book.

    Attributes:
        book_id: Catalog book id used as primary key.
        quantity: Available quantity in stock (never negative).
    """

    __tablename__ = "inventory"
    book_id = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    quantity = mapped_column(Integer, nullable=False, default=0)


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    """Context manager that yields a SQLAlchemy session.

    The session is automatically closed when exiting the context.

    Yields:
        Session: Active SQLAlchemy session connected to the database.
    """
    with Session(engine) as s:
        yield s


class InventoryRepo:
    """Repository class for inventory operations."""

    def get(self, book_id: int) -> int:
        """Get current stock quantity for a book (0 if unknown)."""
        with get_session() as s:
            obj = s.get(Stock, book_id)
            return obj.quantity if obj else 0

    def upsert(self, book_id: int, quantity: int) -> None:
        """Set stock quantity for a book, creating the row if needed."""
        with get_session() as s:
            obj = s.get(Stock, book_id) or Stock(book_id=book_id, quantity=0)
            obj.quantity = quantity
            s.merge(obj)
            s.commit()

    def check_bulk(self, quantities: Mapping[int, int]) -> Dict[int, bool]:
        """Report, per book, whether the requested quantity is in stock.

        Unknown books are reported as unavailable. Nothing is locked or
        modified.
        """
        with get_session() as s:
            rows = s.execute(select(Stock).where(Stock.book_id.in_(list(quantities)))).scalars().all()
            current = {r.book_id: r.quantity for r in rows}
        return {b: current.get(b, 0) >= q for b, q in quantities.items()}

    def reduce_bulk(self, quantities: Mapping[int, int]) -> List[int]:
        """Atomically reduce quantities for multiple books.

        Rows are locked with SELECT FOR UPDATE in book id order, so two
        concurrent reductions on overlapping books serialize instead of
        deadlocking. Either every book is reduced or none is.

        Args:
            quantities: Mapping of book id to quantity to remove.

        Returns:
            list[int]: Book ids with insufficient stock. Empty on success;
                when non-empty nothing was changed.
        """
        with get_session() as s:
            rows = (
                s.execute(
                    select(Stock)
                    .where(Stock.book_id.in_(list(quantities)))
                    .order_by(Stock.book_id)
                    .with_for_update()
                )
                .scalars()
                .all()
            )
            current = {r.book_id: r for r in rows}
            short = sorted(
                b for b, q in quantities.items() if b not in current or current[b].quantity < q
            )
            if short:
                s.rollback()
                return short
            for b, q in quantities.items():
                current[b].quantity -= q
            s.commit()
            return []
