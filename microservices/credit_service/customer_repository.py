"""
Customer Mirror Repository

Read-only access to the customer records mirrored from the subscription
provider. Each row holds the user's entitlement map as JSON.
Implements CustomerMirrorProtocol from protocols.py
"""

import json
import logging
import re
from typing import Any, AsyncIterator, Optional, Tuple

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class CustomerMirrorRepository:
    """Mirrored customer records - PostgreSQL (Async)"""

    def __init__(
        self,
        db: Optional[PostgresClientWrapper] = None,
        config: Optional[ConfigManager] = None,
        table: Optional[str] = None,
    ):
        if config is None:
            config = ConfigManager("credit_service")
        if db is None:
            db = PostgresClientWrapper("credit_service", config=config)

        table = table or config.get_service_config().customer_mirror_table
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid customer mirror table name: {table!r}")

        self.db = db
        self.table = table

    async def iter_entitlement_snapshots(self, batch_size: int = 500) -> AsyncIterator[Tuple[str, Any]]:
        """
        Yield (uid, raw entitlement map) for every mirrored customer.

        Rows are read in uid order with keyset pagination so the scan never
        holds a long-running cursor.
        """
        last_uid = ""
        while True:
            try:
                rows = await self.db.query(
                    f'''
                    SELECT uid, entitlements FROM {self.table}
                    WHERE uid > $1
                    ORDER BY uid
                    LIMIT $2
                    ''',
                    params=[last_uid, batch_size],
                )
            except Exception as e:
                logger.error(f"Error reading customer mirror after uid {last_uid!r}: {e}")
                raise

            for row in rows:
                yield row["uid"], self._decode_json(row.get("entitlements"))

            if len(rows) < batch_size:
                return
            last_uid = rows[-1]["uid"]

    @staticmethod
    def _decode_json(value: Any) -> Any:
        """asyncpg returns json/jsonb columns as text unless a codec is set"""
        if isinstance(value, (str, bytes)):
            try:
                return json.loads(value)
            except ValueError:
                return None
        return value


__all__ = ["CustomerMirrorRepository"]
