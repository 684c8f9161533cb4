from sqlalchemy import Column, Integer, String, BigInteger, Boolean, DateTime, JSON, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()

class Record:
    """Plain-dict view of a row, the shape transforms and responses work with."""

    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

class Order(Record, Base):
    __tablename__ = "orders"
    id = Column(String(64), primary_key=True)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(8), nullable=False, default="INR")
    tier = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="created")  # created|paid
    created_at = Column(DateTime, server_default=func.now())
    version_id = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

class PaymentRecord(Record, Base):
    __tablename__ = "payments"
    payment_id = Column(String(64), primary_key=True)
    order_id = Column(String(64), index=True, nullable=False)
    amount = Column(BigInteger, nullable=False)
    tier = Column(String(16), nullable=False)
    session_key = Column(String(16), nullable=False)
    share_slug = Column(String(80), nullable=False)
    price_source = Column(String(16), nullable=False, default="ledger")  # ledger|fallback
    verified_at = Column(String(40), nullable=False)

class AccessCode(Record, Base):
    __tablename__ = "founder_codes"
    code = Column(String(64), primary_key=True)
    max_uses = Column(Integer, nullable=False, default=1)
    used = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(BigInteger, nullable=True)  # epoch ms
    tier = Column(String(16), nullable=False, default="reply")
    redeemed_at = Column(BigInteger, nullable=True)  # epoch ms
    created_at = Column(DateTime, server_default=func.now())
    version_id = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

class AccessToken(Record, Base):
    __tablename__ = "founder_tokens"
    token = Column(String(64), primary_key=True)
    tier = Column(String(16), nullable=False)
    created_at = Column(BigInteger, nullable=False)  # epoch ms
    consumed = Column(Boolean, nullable=False, default=False)
    version_id = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

class SharedSession(Record, Base):
    __tablename__ = "shared_sessions"
    session_key = Column(String(16), primary_key=True)
    payload = Column(JSON, nullable=False)
    tier = Column(String(16), nullable=False)
    reply_enabled = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), nullable=False, default="sealed")
    sealed_at = Column(String(40), nullable=False)
    payment_id = Column(String(64), unique=True, nullable=True)  # null for founder sessions
    order_id = Column(String(64), nullable=True)
    share_slug = Column(String(80), nullable=False)
    # Owned by the reply flow; everything above is immutable once sealed.
    reply_text = Column(Text, nullable=True)
    reply_sealed_at = Column(String(40), nullable=True)
    version_id = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}
