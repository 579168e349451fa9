"""
Database models for the price cache.
Defines the latest-quote table and the per-user broker credentials it reads.
"""
from sqlalchemy import Column, DateTime, Float, Integer, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class PriceCacheRow(Base):
    """Latest known quote per symbol. One row per symbol, replaced on refresh."""
    __tablename__ = "price_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(32), unique=True, nullable=False, index=True)
    price = Column(Float, nullable=False)
    change = Column(Float, nullable=False, default=0.0)
    change_pct = Column(Float, nullable=False, default=0.0)
    volume = Column(Integer, nullable=False, default=0)
    source = Column(String(16), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<PriceCacheRow(symbol={self.symbol}, price={self.price}, updated_at={self.updated_at})>"


class BrokerCredential(Base):
    """Brokerage API credentials connected by a user."""
    __tablename__ = "broker_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), unique=True, nullable=False, index=True)
    api_key = Column(String(256), nullable=True)
    access_token = Column(String(2048), nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<BrokerCredential(user_id={self.user_id}, token_expiry={self.token_expiry})>"
