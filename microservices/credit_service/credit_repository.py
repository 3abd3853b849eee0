"""
Credit Service Data Repository

Data access layer - PostgreSQL (asyncpg)
Implements CreditBalanceStoreProtocol from protocols.py
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper

from .models import BalanceMutation, CreditBalance, CreditTransaction
from .protocols import CreditStoreError

logger = logging.getLogger(__name__)

# Conflicts PostgreSQL asks the client to retry
RETRYABLE_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

MAX_ATTEMPTS = 5


class CreditRepository:
    """Credit service data repository - PostgreSQL (Async)"""

    def __init__(
        self,
        db: Optional[PostgresClientWrapper] = None,
        config: Optional[ConfigManager] = None,
    ):
        if db is None:
            db = PostgresClientWrapper("credit_service", config=config)

        self.db = db
        self.schema = "credit"
        self.balances_table = "credit_balances"
        self.transactions_table = "credit_transactions"

    async def initialize(self):
        """Connect and create tables if needed"""
        await self.db.connect()
        await self.db.execute(f'''
            CREATE SCHEMA IF NOT EXISTS {self.schema};

            CREATE TABLE IF NOT EXISTS {self.schema}.{self.balances_table} (
                uid VARCHAR(128) PRIMARY KEY,
                gift_credit INTEGER NOT NULL DEFAULT 0 CHECK (gift_credit >= 0),
                paid_credit INTEGER NOT NULL DEFAULT 0 CHECK (paid_credit >= 0),
                last_gift_reset TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE TABLE IF NOT EXISTS {self.schema}.{self.transactions_table} (
                id BIGSERIAL PRIMARY KEY,
                transaction_id VARCHAR(64) NOT NULL UNIQUE,
                uid VARCHAR(128) NOT NULL,
                transaction_type VARCHAR(32) NOT NULL,
                amount INTEGER NOT NULL DEFAULT 0,
                used_gift INTEGER NOT NULL DEFAULT 0,
                used_paid INTEGER NOT NULL DEFAULT 0,
                usage_type VARCHAR(100),
                usage_id VARCHAR(255),
                added_paid INTEGER NOT NULL DEFAULT 0,
                product_id VARCHAR(255),
                purchase_id VARCHAR(255),
                added_gift INTEGER NOT NULL DEFAULT 0,
                reason VARCHAR(500),
                gift_after INTEGER NOT NULL,
                paid_after INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_credit_transactions_uid_created
                ON {self.schema}.{self.transactions_table} (uid, created_at DESC);
        ''')
        logger.info("Credit repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Credit repository database connection closed")

    # ====================
    # Balance reads
    # ====================

    async def get_balance(self, uid: str) -> Optional[CreditBalance]:
        """Get balance by uid without creating it"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.balances_table}
                WHERE uid = $1
            '''
            result = await self.db.query_row(query, params=[uid])
            if result:
                return self._row_to_balance(result)
            return None

        except Exception as e:
            logger.error(f"Error getting credit balance {uid}: {e}")
            raise

    async def get_or_create_balance(self, uid: str) -> CreditBalance:
        """Get balance by uid, creating a zeroed record if absent"""
        try:
            async with self.db.transaction() as conn:
                await self._insert_if_missing(conn, uid)
                row = await conn.fetchrow(
                    f'SELECT * FROM {self.schema}.{self.balances_table} WHERE uid = $1',
                    uid,
                )
            return self._row_to_balance(row)

        except Exception as e:
            logger.error(f"Error getting or creating credit balance {uid}: {e}")
            raise

    # ====================
    # Transactional read-modify-write
    # ====================

    async def transact_balance(
        self,
        uid: str,
        mutator: Callable[[Optional[CreditBalance]], BalanceMutation],
        create_missing: bool = False,
    ) -> BalanceMutation:
        """
        Lock the user's row, apply mutator, and persist the result together
        with its ledger line. Serialization failures and deadlocks are retried.
        """

        @retry(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        async def _retry_wrapper() -> BalanceMutation:
            return await self._transact_once(uid, mutator, create_missing)

        try:
            return await _retry_wrapper()
        except RETRYABLE_ERRORS as e:
            logger.error(f"Credit balance transaction for {uid} failed after {MAX_ATTEMPTS} attempts: {e}")
            raise CreditStoreError(f"Balance store conflict for user {uid}", reason=str(e)) from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Credit balance transaction for {uid} failed: {e}", exc_info=True)
            raise CreditStoreError(f"Balance store error for user {uid}", reason=str(e)) from e

    async def _transact_once(
        self,
        uid: str,
        mutator: Callable[[Optional[CreditBalance]], BalanceMutation],
        create_missing: bool,
    ) -> BalanceMutation:
        async with self.db.transaction() as conn:
            if create_missing:
                await self._insert_if_missing(conn, uid)

            row = await conn.fetchrow(
                f'SELECT * FROM {self.schema}.{self.balances_table} WHERE uid = $1 FOR UPDATE',
                uid,
            )
            current = self._row_to_balance(row) if row else None

            # Raising here rolls the transaction back
            mutation = mutator(current)

            now = datetime.now(timezone.utc)
            balance = mutation.balance
            saved = await conn.fetchrow(
                f'''
                INSERT INTO {self.schema}.{self.balances_table} (
                    uid, gift_credit, paid_credit, last_gift_reset, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (uid) DO UPDATE SET
                    gift_credit = EXCLUDED.gift_credit,
                    paid_credit = EXCLUDED.paid_credit,
                    last_gift_reset = EXCLUDED.last_gift_reset,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
                ''',
                uid,
                balance.gift_credit,
                balance.paid_credit,
                balance.last_gift_reset,
                balance.created_at or now,
                balance.updated_at or now,
            )

            txn = mutation.transaction
            if txn.created_at is None:
                txn = txn.model_copy(update={"created_at": now})
            await conn.execute(
                f'''
                INSERT INTO {self.schema}.{self.transactions_table} (
                    transaction_id, uid, transaction_type, amount,
                    used_gift, used_paid, usage_type, usage_id,
                    added_paid, product_id, purchase_id, added_gift,
                    reason, gift_after, paid_after, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                ''',
                txn.transaction_id,
                txn.uid,
                txn.transaction_type.value,
                txn.amount,
                txn.used_gift,
                txn.used_paid,
                txn.usage_type,
                txn.usage_id,
                txn.added_paid,
                txn.product_id,
                txn.purchase_id,
                txn.added_gift,
                txn.reason,
                txn.gift_after,
                txn.paid_after,
                txn.created_at,
            )

        return BalanceMutation(
            balance=self._row_to_balance(saved),
            transaction=txn,
            result=mutation.result,
        )

    async def _insert_if_missing(self, conn: asyncpg.Connection, uid: str):
        now = datetime.now(timezone.utc)
        await conn.execute(
            f'''
            INSERT INTO {self.schema}.{self.balances_table} (uid, gift_credit, paid_credit, created_at, updated_at)
            VALUES ($1, 0, 0, $2, $2)
            ON CONFLICT (uid) DO NOTHING
            ''',
            uid,
            now,
        )

    # ====================
    # Transactions
    # ====================

    async def get_user_transactions(
        self, uid: str, limit: int = 50, offset: int = 0
    ) -> List[CreditTransaction]:
        """Get ledger lines for user, newest first"""
        try:
            query = f'''
                SELECT * FROM {self.schema}.{self.transactions_table}
                WHERE uid = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2 OFFSET $3
            '''
            results = await self.db.query(query, params=[uid, limit, offset])
            return [self._row_to_transaction(row) for row in results]

        except Exception as e:
            logger.error(f"Error getting transactions for user {uid}: {e}")
            raise

    # ====================
    # Helper Methods
    # ====================

    def _row_to_balance(self, row: Any) -> CreditBalance:
        """Convert database row to CreditBalance"""
        data: Dict[str, Any] = dict(row)
        return CreditBalance(
            uid=data["uid"],
            gift_credit=data.get("gift_credit") or 0,
            paid_credit=data.get("paid_credit") or 0,
            last_gift_reset=data.get("last_gift_reset"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def _row_to_transaction(self, row: Any) -> CreditTransaction:
        """Convert database row to CreditTransaction"""
        data: Dict[str, Any] = dict(row)
        data.pop("id", None)
        return CreditTransaction(**data)


__all__ = ["CreditRepository", "RETRYABLE_ERRORS"]
