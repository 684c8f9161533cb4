"""
Document store over SQLAlchemy.

All mutation of founder codes, founder tokens, orders and sessions goes
through two primitives:

* ``transaction`` - per-record compare-and-swap. The record is read, a pure
  transform computes the new field values, and the UPDATE is guarded by the
  row's ``version_id``. A concurrent writer bumps the version, the guarded
  UPDATE matches no row, SQLAlchemy raises ``StaleDataError`` and the
  transform is re-run against the fresh record.
* ``commit_session`` - the multi-record session commit, one database
  transaction touching the session row, the payment record and the order
  (or the founder token).

Every SQLAlchemy error is translated here into the service error taxonomy;
nothing above this module sees driver exceptions.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm.exc import StaleDataError

from common.error_handling import ServiceError, ErrorCodes, GENERIC_UNAVAILABLE
from .db import make_session_factory
from .models import Base, Order, PaymentRecord, AccessCode, AccessToken, SharedSession

logger = logging.getLogger(__name__)

Transform = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]

class StoreUnavailable(ServiceError):
    def __init__(self, original_error: Exception = None):
        super().__init__(ErrorCodes.DATABASE_ERROR, GENERIC_UNAVAILABLE, original_error)

class ConcurrencyConflict(ServiceError):
    """CAS retries exhausted; safe for the client to retry."""
    def __init__(self, attempts: int):
        super().__init__(ErrorCodes.CONCURRENCY_CONFLICT, GENERIC_UNAVAILABLE)
        self.attempts = attempts

class DuplicateCommit(Exception):
    """A unique key of the session commit already exists (payment id or session key)."""

class TokenConsumed(Exception):
    """The founder token was absent, already consumed, or consumed concurrently."""

@dataclass
class TransactionResult:
    committed: bool
    snapshot: Optional[Dict[str, Any]]
    attempts: int

@dataclass
class SessionBatch:
    session_key: str
    payload: Dict[str, Any]
    tier: str
    reply_enabled: bool
    share_slug: str
    sealed_at: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    price_source: str = "ledger"
    founder_token: Optional[str] = None

class DocumentStore:
    def __init__(self, engine: Engine, cas_max_attempts: int = 5):
        self.engine = engine
        self.session_factory = make_session_factory(engine)
        self.cas_max_attempts = cas_max_attempts

    def create_schema(self):
        Base.metadata.create_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()

    # Reads
    def _get(self, model: Type[Base], key: str) -> Optional[Dict[str, Any]]:
        try:
            with self.session_factory() as db:
                row = db.get(model, key)
                return row.to_dict() if row else None
        except SQLAlchemyError as e:
            raise StoreUnavailable(e)

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self._get(Order, order_id)

    def get_payment(self, payment_id: str) -> Optional[Dict[str, Any]]:
        return self._get(PaymentRecord, payment_id)

    def get_session(self, session_key: str) -> Optional[Dict[str, Any]]:
        return self._get(SharedSession, session_key)

    def get_access_code(self, code: str) -> Optional[Dict[str, Any]]:
        return self._get(AccessCode, code)

    def get_access_token(self, token: str) -> Optional[Dict[str, Any]]:
        return self._get(AccessToken, token)

    def session_exists(self, session_key: str) -> bool:
        return self._get(SharedSession, session_key) is not None

    # Inserts
    def _insert(self, row: Base):
        try:
            with self.session_factory() as db:
                db.add(row)
                db.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailable(e)

    def put_order(self, order_id: str, amount: int, tier: str, currency: str):
        self._insert(Order(id=order_id, amount=amount, tier=tier, currency=currency, status="created"))

    def put_access_code(self, code: str, tier: str = "reply", max_uses: int = 1,
                        expires_at: Optional[int] = None, active: bool = True):
        self._insert(AccessCode(code=code, tier=tier, max_uses=max_uses, used=0,
                                active=active, expires_at=expires_at))

    # Compare-and-swap
    def transaction(self, model: Type[Base], key: str, transform: Transform,
                    companions: Optional[Callable[[Dict[str, Any]], Iterable[Base]]] = None) -> TransactionResult:
        """Atomically replace the fields of one record with transform(current).

        transform returns the changed fields, or None to abort. companions,
        if given, receives the committed snapshot and returns new rows that
        are inserted in the same database transaction.
        """
        for attempt in range(1, self.cas_max_attempts + 1):
            try:
                with self.session_factory() as db:
                    row = db.get(model, key)
                    if row is None:
                        return TransactionResult(False, None, attempt)

                    current = row.to_dict()
                    changes = transform(dict(current))
                    if changes is None:
                        return TransactionResult(False, current, attempt)

                    for name, value in changes.items():
                        setattr(row, name, value)
                    snapshot = {**current, **changes}
                    if companions is not None:
                        db.add_all(list(companions(snapshot)))

                    db.commit()
                    return TransactionResult(True, row.to_dict(), attempt)
            except StaleDataError:
                logger.info(f"CAS conflict on {model.__tablename__}/{str(key)[:8]}, attempt {attempt}/{self.cas_max_attempts}")
                continue
            except SQLAlchemyError as e:
                raise StoreUnavailable(e)

        logger.warning(f"❌ CAS gave up on {model.__tablename__}/{str(key)[:8]} after {self.cas_max_attempts} attempts")
        raise ConcurrencyConflict(self.cas_max_attempts)

    # Multi-record session commit
    def commit_session(self, batch: SessionBatch) -> Dict[str, Any]:
        """Write session + payment record + order status (or token consumption) all-or-nothing."""
        try:
            with self.session_factory() as db:
                db.add(SharedSession(
                    session_key=batch.session_key,
                    payload=batch.payload,
                    tier=batch.tier,
                    reply_enabled=batch.reply_enabled,
                    status="sealed",
                    sealed_at=batch.sealed_at,
                    payment_id=batch.payment_id,
                    order_id=batch.order_id,
                    share_slug=batch.share_slug,
                ))

                if batch.payment_id is not None:
                    db.add(PaymentRecord(
                        payment_id=batch.payment_id,
                        order_id=batch.order_id,
                        amount=batch.amount,
                        tier=batch.tier,
                        session_key=batch.session_key,
                        share_slug=batch.share_slug,
                        price_source=batch.price_source,
                        verified_at=batch.sealed_at,
                    ))
                    order = db.get(Order, batch.order_id)
                    if order is None:
                        # ledger row never landed; record the order as paid now
                        db.add(Order(id=batch.order_id, amount=batch.amount, tier=batch.tier,
                                     currency=batch.currency, status="paid"))
                    else:
                        order.status = "paid"

                if batch.founder_token is not None:
                    token = db.get(AccessToken, batch.founder_token)
                    if token is None or token.consumed:
                        raise TokenConsumed()
                    token.consumed = True

                db.commit()
        except IntegrityError as e:
            logger.info(f"Session commit hit an existing key: {type(e.orig).__name__}")
            raise DuplicateCommit() from e
        except StaleDataError as e:
            if batch.founder_token is not None:
                raise TokenConsumed() from e
            raise ConcurrencyConflict(1) from e
        except SQLAlchemyError as e:
            raise StoreUnavailable(e)

        return {"session_key": batch.session_key, "share_slug": batch.share_slug}
