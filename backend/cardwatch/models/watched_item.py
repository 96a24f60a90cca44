"""WatchedItem model: an operator-configured search phrase and price ceiling."""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from cardwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class WatchedItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A collectible the operator wants to be alerted about.

    Rows are owned by the admin surface; the scraping core only reads them.
    """

    __tablename__ = "watched_items"
    __table_args__ = (
        CheckConstraint("price_ceiling > 0", name="ck_watched_items_price_ceiling_positive"),
    )

    display_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Human readable name shown in alerts",
    )
    search_phrase: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
        comment="Phrase submitted to marketplace search and used for relevance matching",
    )
    price_ceiling: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Alert when a listing is priced at or below this amount",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )

    @validates("price_ceiling")
    def _validate_price_ceiling(self, key: str, value) -> Decimal:
        value = Decimal(str(value))
        if value <= 0:
            raise ValueError("price_ceiling must be greater than zero")
        return value

    def __repr__(self) -> str:
        return f"<WatchedItem(name='{self.display_name}', phrase='{self.search_phrase}', ceiling={self.price_ceiling})>"
