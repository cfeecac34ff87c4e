from dataclasses import dataclass
from typing import Callable

from sqlalchemy import Column, Date, Float, Integer, JSON, String, Table
from sqlalchemy.orm import Session
from sqlalchemy.sql import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
import zope.interface

from ..discounts import Discount
from ..interfaces import IDiscountStore, ISessionSerializer, IStorageShim


def make_session_table(metadata, name="shop_sessions"):
    return Table(
        name,
        metadata,
        Column("id", String(255), primary_key=True),
        Column("shop_name", String(255), nullable=False, index=True),
        Column("type", String(32), nullable=False),
        Column("value", JSON, nullable=False),
    )


def make_discount_table(metadata, name="discounts"):
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("code", String(255), nullable=False),
        Column("amount", Float, nullable=False),
        Column("type", String(32), nullable=False),
        Column("start_date", Date, nullable=False),
        Column("end_date", Date, nullable=False),
    )


@zope.interface.implementer(IStorageShim)
@dataclass
class SqlalchemyStorageShim:
    """Store session dictionary serialized as json in db with SQLAlchemy."""

    db: Session
    table: Table
    serializer: ISessionSerializer

    mark_changed: Callable = None

    def store_session(self, session):
        session_dict = self.serializer.to_dict(session)
        values = dict(
            shop_name=session_dict["shop_name"],
            type=session_dict["type"],
            value=session_dict,
        )
        result = self.db.execute(self.build_upsert(session_dict["id"], values))
        if self.mark_changed:
            self.mark_changed(self.db)
        return result

    def build_upsert(self, session_id, values):
        """Single statement insert or replace, last writer wins."""
        dialect_name = self.db.get_bind().dialect.name
        if dialect_name == "postgresql":
            stmt = postgresql_insert(self.table)
        elif dialect_name == "sqlite":
            stmt = sqlite_insert(self.table)
        else:
            raise NotImplementedError(f"No upsert for dialect: {dialect_name}")
        return stmt.values(id=session_id, **values).on_conflict_do_update(
            index_elements=[self.table.c.id], set_=values
        )

    def load_session(self, session_id):
        row = (
            self.db.execute(select(self.table).where(self.table.c.id == session_id))
            .mappings()
            .first()
        )
        return self.serializer.from_dict(row["value"]) if row else None

    def remove_session_by_id(self, session_id):
        result = self.db.execute(
            self.table.delete().where(self.table.c.id == session_id)
        )
        if self.mark_changed:
            self.mark_changed(self.db)
        return result.rowcount > 0

    def remove_all_shop_sessions(self, shop_name):
        """Remove all sessions for this shop.

        This is intended to be used when shop uninstalls application.
        """
        result = self.db.execute(
            self.table.delete().where(self.table.c.shop_name == shop_name)
        )
        if self.mark_changed:
            self.mark_changed(self.db)
        return result.rowcount


@zope.interface.implementer(IDiscountStore)
@dataclass
class SqlalchemyDiscountStore:
    """Store discounts as rows with SQLAlchemy."""

    db: Session
    table: Table

    mark_changed: Callable = None

    def _row_to_discount(self, row):
        return Discount(
            id=row["id"],
            code=row["code"],
            amount=row["amount"],
            type=row["type"],
            start_date=row["start_date"],
            end_date=row["end_date"],
        )

    def create(self, discount_request):
        result = self.db.execute(
            self.table.insert().values(
                code=discount_request.code,
                amount=discount_request.amount,
                type=discount_request.type,
                start_date=discount_request.start_date,
                end_date=discount_request.end_date,
            )
        )
        if self.mark_changed:
            self.mark_changed(self.db)
        return Discount.from_request(result.inserted_primary_key[0], discount_request)

    def list(self):
        rows = self.db.execute(select(self.table).order_by(self.table.c.id)).mappings()
        return [self._row_to_discount(row) for row in rows]

    def delete(self, discount_id):
        result = self.db.execute(
            self.table.delete().where(self.table.c.id == discount_id)
        )
        if self.mark_changed:
            self.mark_changed(self.db)
        return result.rowcount > 0
