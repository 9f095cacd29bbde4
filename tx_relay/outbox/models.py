"""
Outbox table definitions
"""

from sqlalchemy import Column, Float, Integer, LargeBinary, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()
metadata = Base.metadata


class OutboxRow(Base):
    """Active outbox: transactions awaiting submission"""
    __tablename__ = 'tx_outbox'

    id = Column(String(64), primary_key=True)
    to_address = Column(String(64), nullable=False)
    amount = Column(String(40), nullable=False)  # Decimal as text, no float rounding
    memo = Column(Text)
    fee_preset = Column(String(16), nullable=False)
    created_at = Column(Float, nullable=False, index=True)
    retries = Column(Integer, nullable=False, default=0)
    signed_tx = Column(LargeBinary)
    signature = Column(String(128))


class FailedRow(Base):
    """Permanently failed transactions, moved out of the active outbox"""
    __tablename__ = 'tx_outbox_failed'

    id = Column(String(64), primary_key=True)
    to_address = Column(String(64), nullable=False)
    amount = Column(String(40), nullable=False)
    memo = Column(Text)
    fee_preset = Column(String(16), nullable=False)
    created_at = Column(Float, nullable=False)
    retries = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    signature = Column(String(128))
    failed_at = Column(Float, nullable=False, index=True)
