from sqlalchemy import Column, String, BigInteger, CheckConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from app.db.base import Base


class Interest(Base):
    """
    One-directional 'from likes to at venue' fact.

    Consumed once it pairs with its mirror: consumed_match_id points at the
    match both facts produced, and consumed facts never pair again.
    """
    __tablename__ = "interests"

    from_user_id = Column(String(128), primary_key=True)
    to_user_id = Column(String(128), primary_key=True)
    venue_id = Column(String(128), primary_key=True)
    created_at = Column(BigInteger, nullable=False)
    consumed_match_id = Column(UUID(as_uuid=True), nullable=True)
    consumed_at = Column(BigInteger, nullable=True)

    __table_args__ = (
        CheckConstraint("from_user_id <> to_user_id", name="chk_interest_no_self"),
        # Mirror lookups and "who liked me here"
        Index("ix_interest_target_venue", "to_user_id", "venue_id"),
    )

    @property
    def consumed(self) -> bool:
        return self.consumed_match_id is not None
