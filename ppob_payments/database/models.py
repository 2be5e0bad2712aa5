"""SQLAlchemy database models for the PPOB transaction lifecycle."""
import enum
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionStatus(str, enum.Enum):
    """Gateway transaction status. Sukses and Gagal are terminal."""

    PENDING = "Pending"
    SUKSES = "Sukses"
    GAGAL = "Gagal"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING

    @classmethod
    def parse(cls, value: Any) -> "TransactionStatus | None":
        """Case-insensitive lookup; None for anything unknown."""
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        return None


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Transaction(Base):
    """
    PPOB transaction records table.

    One row per purchase attempt, keyed by the client-generated ref_id,
    which doubles as the idempotency key sent to the gateway.
    """

    __tablename__ = "transactions"

    ref_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_no: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_code: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TransactionStatus.PENDING.value, index=True
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    rc: Mapped[str | None] = mapped_column(String(8), nullable=True)
    sn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    buyer_last_saldo: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('Pending', 'Sukses', 'Gagal')",
            name="valid_transaction_status",
        ),
        Index("idx_transactions_status_updated", "status", "updated_at"),
        Index("idx_transactions_status_created", "status", "created_at", "ref_id"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(ref_id={self.ref_id}, product={self.product_code}, "
            f"status={self.status})>"
        )


class TransactionEvent(Base):
    """
    Transaction audit trail table.

    Append-only record of submissions, status changes and anomalies
    for each ref_id.
    """

    __tablename__ = "transaction_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    ref_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (Index("idx_transaction_events_type", "event_type"),)

    def __repr__(self) -> str:
        """String representation of TransactionEvent."""
        return (
            f"<TransactionEvent(id={self.id}, ref_id={self.ref_id}, "
            f"type={self.event_type})>"
        )


class Product(Base):
    """
    Local copy of the gateway price list.

    A product can be purchased only while both the buyer and the seller
    side report it as active.
    """

    __tablename__ = "products"

    buyer_sku_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    brand: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    seller_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    price: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    buyer_product_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    seller_product_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    unlimited_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stock: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    multi: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_cut_off: Mapped[str | None] = mapped_column(String(8), nullable=True)
    end_cut_off: Mapped[str | None] = mapped_column(String(8), nullable=True)
    desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def is_enabled(self) -> bool:
        return bool(self.buyer_product_status and self.seller_product_status)

    def __repr__(self) -> str:
        """String representation of Product."""
        return f"<Product(sku={self.buyer_sku_code}, price={self.price})>"
