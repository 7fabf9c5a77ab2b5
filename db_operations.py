import logging

import psycopg2
from psycopg2.extras import execute_values

from errors import (CheckpointReadError, CheckpointWriteError, EventPersistError,
                    EventReadError)
from models import FeeEvent

logger = logging.getLogger(__name__)

INSERT_EVENTS_SQL = '''
    INSERT INTO fee_collected_events
    (chain_id, token, integrator, integrator_fee, lifi_fee,
     block_number, transaction_hash, log_index, timestamp)
    VALUES %s
    ON CONFLICT (chain_id, transaction_hash, log_index)
    DO NOTHING
    RETURNING log_index
'''

SELECT_EVENTS_SQL = '''
    SELECT chain_id, token, integrator, integrator_fee, lifi_fee,
           block_number, transaction_hash, log_index, timestamp
    FROM fee_collected_events
    WHERE chain_id = %s
'''


def rollback(db_conn):
    """Roll back the open transaction unless the connection is already gone.

    A dropped server connection leaves `closed` set, and calling rollback()
    on it raises InterfaceError.
    """
    if db_conn.closed:
        return
    try:
        db_conn.rollback()
    except psycopg2.Error as e:
        logger.warning(f"Rollback failed: {e}")


class DatabaseOperations:
    """One PostgreSQL connection and the stores built on it.

    psycopg2 connections carry a single transaction, so each chain scraped
    concurrently needs its own DatabaseOperations.
    """

    def __init__(self, db_config):
        self.db_config = db_config
        # Connect to PostgreSQL database
        self.db_conn = psycopg2.connect(**db_config)

    def reconnect(self):
        """Open a new connection if the current one was closed.

        Returns True when a new connection was opened; stores created before
        that still hold the old connection and must be rebuilt.
        """
        if not self.db_conn.closed:
            return False
        logger.warning("Database connection lost, reconnecting")
        self.db_conn = psycopg2.connect(**self.db_config)
        logger.info("Database connection established")
        return True

    def setup_database(self):
        with self.db_conn.cursor() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS scraper_configs (
                    chain_id BIGINT PRIMARY KEY,
                    last_block BIGINT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                );

                CREATE TABLE IF NOT EXISTS fee_collected_events (
                    chain_id BIGINT NOT NULL,
                    token TEXT NOT NULL,
                    integrator TEXT NOT NULL,
                    integrator_fee NUMERIC(78, 0) NOT NULL,
                    lifi_fee NUMERIC(78, 0) NOT NULL,
                    block_number BIGINT NOT NULL,
                    transaction_hash TEXT NOT NULL,
                    log_index INTEGER NOT NULL,
                    timestamp TIMESTAMPTZ NOT NULL,
                    UNIQUE(chain_id, transaction_hash, log_index)
                );

                CREATE INDEX IF NOT EXISTS idx_fee_chain_block
                    ON fee_collected_events(chain_id, block_number);
                CREATE INDEX IF NOT EXISTS idx_fee_integrator
                    ON fee_collected_events(integrator);
            ''')
        self.db_conn.commit()

    def checkpoint_store(self):
        return CheckpointStore(self.db_conn)

    def event_store(self):
        return EventStore(self.db_conn)

    def close(self):
        self.db_conn.close()


class CheckpointStore:
    """Last fully processed block per chain, one row per chain_id."""

    def __init__(self, db_conn):
        self.db_conn = db_conn

    def get_checkpoint(self, chain_id, default):
        """Return the stored last block for `chain_id`, or `default` if none.

        A missing row is normal for a chain that was never scraped. Any
        database failure raises CheckpointReadError.
        """
        try:
            with self.db_conn.cursor() as cursor:
                cursor.execute(
                    'SELECT last_block FROM scraper_configs WHERE chain_id = %s',
                    (chain_id,))
                row = cursor.fetchone()
            self.db_conn.commit()
        except psycopg2.Error as e:
            rollback(self.db_conn)
            raise CheckpointReadError(
                f"Could not read checkpoint: {e}", chain_id=chain_id) from e

        if row is None:
            return default
        return row[0]

    def set_checkpoint(self, chain_id, block_number):
        """Upsert the checkpoint in a single statement.

        The stored value never moves backwards: an older block than the one
        already recorded leaves the row unchanged.
        """
        try:
            with self.db_conn.cursor() as cursor:
                cursor.execute('''
                    INSERT INTO scraper_configs (chain_id, last_block)
                    VALUES (%s, %s)
                    ON CONFLICT (chain_id) DO UPDATE
                    SET last_block = GREATEST(scraper_configs.last_block, EXCLUDED.last_block),
                        updated_at = now()
                    RETURNING last_block
                ''', (chain_id, block_number))
                row = cursor.fetchone()
            self.db_conn.commit()
        except psycopg2.Error as e:
            rollback(self.db_conn)
            raise CheckpointWriteError(
                f"Error updating last block: {e}",
                chain_id=chain_id, block_number=block_number) from e

        if row is None:
            raise CheckpointWriteError(
                "Error updating last block: no row returned",
                chain_id=chain_id, block_number=block_number)
        return row[0]


class EventStore:
    """Append-only storage of FeeEvents, tolerant of re-delivered events."""

    def __init__(self, db_conn, page_size=500):
        self.db_conn = db_conn
        self.page_size = page_size

    def insert_batch(self, events):
        """Insert `events` and return how many rows were new.

        Events already stored under the same (chain_id, transaction_hash,
        log_index) are skipped by the ON CONFLICT clause. Every other database
        error rolls back the whole batch and raises EventPersistError.
        """
        if not events:
            return 0

        batch_values = [event.as_row() for event in events]
        try:
            with self.db_conn.cursor() as cursor:
                inserted_rows = execute_values(
                    cursor, INSERT_EVENTS_SQL, batch_values,
                    page_size=self.page_size, fetch=True)
            self.db_conn.commit()
        except psycopg2.Error as e:
            rollback(self.db_conn)
            raise EventPersistError(
                f"Error storing events: {e}",
                chain_id=events[0].chain_id,
                from_block=min(event.block_number for event in events),
                to_block=max(event.block_number for event in events)) from e

        inserted = len(inserted_rows)
        duplicates = len(batch_values) - inserted
        logger.info(f"Stored {inserted:,} events")
        if duplicates:
            logger.warning(f"Ignored {duplicates:,} duplicate events")
        return inserted

    def count(self, chain_id):
        try:
            with self.db_conn.cursor() as cursor:
                cursor.execute(
                    'SELECT COUNT(*) FROM fee_collected_events WHERE chain_id = %s',
                    (chain_id,))
                count = cursor.fetchone()[0]
            self.db_conn.commit()
        except psycopg2.Error as e:
            rollback(self.db_conn)
            raise EventReadError(f"Error counting events: {e}", chain_id=chain_id) from e
        return count

    def fetch_events(self, chain_id, from_block=None, to_block=None):
        """Stored events for a chain in on-chain order, optionally by block range."""
        query = SELECT_EVENTS_SQL
        params = [chain_id]
        if from_block is not None:
            query += ' AND block_number >= %s'
            params.append(from_block)
        if to_block is not None:
            query += ' AND block_number <= %s'
            params.append(to_block)
        query += ' ORDER BY block_number, log_index'

        try:
            with self.db_conn.cursor() as cursor:
                cursor.execute(query, params)
                records = cursor.fetchall()
            self.db_conn.commit()
        except psycopg2.Error as e:
            rollback(self.db_conn)
            raise EventReadError(
                f"Error reading events: {e}", chain_id=chain_id,
                from_block=from_block, to_block=to_block) from e

        return [
            FeeEvent(
                chain_id=record[0],
                token=record[1],
                integrator=record[2],
                integrator_fee=int(record[3]),
                lifi_fee=int(record[4]),
                block_number=record[5],
                transaction_hash=record[6],
                log_index=record[7],
                timestamp=record[8],
            )
            for record in records
        ]
