import uuid
from sqlalchemy import Column, String, BigInteger, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from app.db.base import Base


class ReconnectRequest(Base):
    """A participant's pending consent to reconnect from an expired match."""
    __tablename__ = "reconnect_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    match_id = Column(UUID(as_uuid=True), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    requested_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_reconnect_match_user"),
    )
