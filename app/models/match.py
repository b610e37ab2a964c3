import uuid
from typing import Dict
from sqlalchemy import (
    Column, String, Text, ForeignKey, BigInteger, Integer, Boolean, JSON,
    CheckConstraint, Index, text,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from app.db.base import Base
from app.config.constants import PAIR_KEY_SEPARATOR


def make_pair_key(user_a: str, user_b: str) -> str:
    """Canonical, order-independent key for an unordered pair of users."""
    lo, hi = sorted((str(user_a), str(user_b)))
    return f"{lo}{PAIR_KEY_SEPARATOR}{hi}"


class Match(Base):
    """A time-boxed conversation between two users who liked each other."""
    __tablename__ = "matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_a = Column(String(128), nullable=False, index=True)
    participant_b = Column(String(128), nullable=False, index=True)
    pair_key = Column(String(257), nullable=False, index=True)

    venue_id = Column(String(128), nullable=False)
    venue_name = Column(String(255))

    # Epoch ms, set once from the engine clock
    created_at = Column(BigInteger, nullable=False, index=True)
    expired = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    expired_at = Column(BigInteger)

    # Quota counters (Integer for atomic conditional increments)
    message_count_a = Column(Integer, nullable=False, default=0, server_default="0")
    message_count_b = Column(Integer, nullable=False, default=0, server_default="0")

    contact_shared = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    contact_shared_by = Column(String(128))
    contact_payload = Column(JSON().with_variant(JSONB(), "postgresql"))

    # Reconnect audit: set on the old match, exactly once
    reconnected_at = Column(BigInteger)
    reconnected_match_id = Column(UUID(as_uuid=True))
    # Set on a match minted by a reconnect
    previous_match_id = Column(UUID(as_uuid=True))

    messages_purged_at = Column(BigInteger)

    __table_args__ = (
        CheckConstraint("participant_a <> participant_b", name="chk_match_no_self"),
        # At most one open match per pair; expired matches stay as history
        Index(
            "uq_match_open_pair",
            "pair_key",
            unique=True,
            postgresql_where=text("expired = false"),
            sqlite_where=text("expired = 0"),
        ),
        Index("ix_match_expiry_scan", "expired", "created_at"),
    )

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    @property
    def message_count_by_participant(self) -> Dict[str, int]:
        return {
            self.participant_a: self.message_count_a or 0,
            self.participant_b: self.message_count_b or 0,
        }

    def __repr__(self) -> str:
        return f"<Match(id={self.id}, pair={self.pair_key}, expired={self.expired})>"


class MatchMessage(Base):
    """A single chat message appended to a match within its quota."""
    __tablename__ = "match_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    match_id = Column(UUID(as_uuid=True), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(128), nullable=False)
    text = Column(Text, nullable=False)
    sent_at = Column(BigInteger, nullable=False)
