from sqlalchemy import Column, String, BigInteger, Integer
from app.db.base import Base


class RateLimitCounter(Base):
    """Fixed-window action counter keyed by (user_id, action)."""
    __tablename__ = "rate_limit_counters"

    user_id = Column(String(128), primary_key=True)
    action = Column(String(50), primary_key=True)
    count = Column(Integer, nullable=False, default=0, server_default="0")
    window_reset_at = Column(BigInteger, nullable=False)
