from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Optional, Set
import psycopg2
from psycopg2.extras import DictCursor
from .error_utils import UpstreamUnavailable
from .reservation import Booking, Hold

logger = logging.getLogger(__name__)


class DatabasePersistence:
    """
    Postgres store for holds and bookings.

    Correctness of the slot lifecycle lives here, not in the caller's pre-checks:
        bookings.slot_id is UNIQUE, inserts are ON CONFLICT DO NOTHING
        slot_holds.slot_id is the primary key, a hold row can only be overwritten once it has expired
            and never while a booking exists for the slot
    """

    # Schema setup only needs to run once per database per process
    _schema_ready = set()

    def __init__(self, database_url: str, timeout: float = 10.0):
        self._database_url = database_url
        self._timeout = timeout
        if database_url not in DatabasePersistence._schema_ready:
            self._setup_schema()
            DatabasePersistence._schema_ready.add(database_url)

    @contextmanager
    def _database_connect(self):
        """
        Internal function to manage the Postgres database connections.
        Connect and statement time are both bounded by the collaborator timeout. Failures surface as UpstreamUnavailable.
        """
        try:
            connection = psycopg2.connect(self._database_url,
                                          connect_timeout=max(1, int(self._timeout)),
                                          options=f"-c statement_timeout={int(self._timeout * 1000)}")
        except psycopg2.OperationalError as e:
            logger.error("Database connection failed: %s", e.args)
            raise UpstreamUnavailable("Database unavailable") from e
        try:
            with connection:
                yield connection
        except psycopg2.OperationalError as e:
            logger.error("Database operation failed: %s", e.args)
            raise UpstreamUnavailable("Database unavailable") from e
        except psycopg2.DatabaseError as e:
            logger.error("Database error: %s", e.args)
            raise UpstreamUnavailable("Database error", retryable=False) from e
        finally:
            connection.close()

    def find_booking(self, slot_id: str) -> Optional[Booking]:
        query = """SELECT slot_id, start_ts, end_ts, customer_name, customer_email, amount_cents, currency, stripe_payment_intent
                   FROM bookings WHERE slot_id = %s"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, (slot_id,))
                row = cursor.fetchone()
        if row is None:
            return None
        return Booking(row['slot_id'], row['start_ts'], row['end_ts'], row['customer_name'], row['customer_email'],
                       row['amount_cents'], row['currency'], row['stripe_payment_intent'] or '')

    def insert_booking(self, booking: Booking) -> bool:
        """
        At-most-once insert. Returns True if the row was written, False if a booking for the slot already existed.
        """
        query = """INSERT INTO bookings (slot_id, start_ts, end_ts, customer_name, customer_email, amount_cents, currency, stripe_payment_intent)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (slot_id) DO NOTHING
                   RETURNING slot_id"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, (booking.slot_id, booking.start, booking.end, booking.customer_name,
                                       booking.customer_email, booking.amount_minor_units, booking.currency,
                                       booking.payment_reference))
                inserted = cursor.fetchone() is not None
        return inserted

    def list_booking_ids(self) -> Set[str]:
        query = "SELECT slot_id FROM bookings"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query)
                rows = cursor.fetchall()
        return {row[0] for row in rows}

    def find_active_hold(self, slot_id: str, now: datetime) -> Optional[Hold]:
        query = """SELECT slot_id, start_ts, end_ts, customer_name, customer_email, expires_at, checkout_session_id
                   FROM slot_holds WHERE slot_id = %s AND expires_at > %s"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, (slot_id, now))
                row = cursor.fetchone()
        if row is None:
            return None
        return Hold(row['slot_id'], row['start_ts'], row['end_ts'], row['customer_name'], row['customer_email'],
                    row['expires_at'], row['checkout_session_id'] or '')

    def insert_hold(self, hold: Hold, now: datetime) -> bool:
        """
        Conditional insert of a hold. Only written if the slot has no booking and no unexpired hold,
        an expired hold row for the same slot is overwritten.

        Returns True if this call now owns the hold.
        """
        query = """INSERT INTO slot_holds (slot_id, start_ts, end_ts, customer_name, customer_email, expires_at, checkout_session_id)
                   SELECT %(slot_id)s, %(start)s, %(end)s, %(name)s, %(email)s, %(expires_at)s, NULL
                   WHERE NOT EXISTS (SELECT 1 FROM bookings WHERE slot_id = %(slot_id)s)
                   ON CONFLICT (slot_id) DO UPDATE SET
                       start_ts = EXCLUDED.start_ts,
                       end_ts = EXCLUDED.end_ts,
                       customer_name = EXCLUDED.customer_name,
                       customer_email = EXCLUDED.customer_email,
                       expires_at = EXCLUDED.expires_at,
                       checkout_session_id = NULL,
                       created_at = CURRENT_TIMESTAMP
                   WHERE slot_holds.expires_at <= %(now)s
                   RETURNING slot_id"""
        logger.info("Executing query: %s", query)
        params = {"slot_id": hold.slot_id, "start": hold.start, "end": hold.end, "name": hold.customer_name,
                  "email": hold.customer_email, "expires_at": hold.expires_at, "now": now}
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                inserted = cursor.fetchone() is not None
        return inserted

    def attach_payment_session(self, slot_id: str, session_ref: str):
        query = "UPDATE slot_holds SET checkout_session_id = %s WHERE slot_id = %s"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, (session_ref, slot_id))

    def delete_hold(self, slot_id: str):
        query = "DELETE FROM slot_holds WHERE slot_id = %s"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, (slot_id,))

    def list_active_hold_ids(self, now: datetime) -> Set[str]:
        query = "SELECT slot_id FROM slot_holds WHERE expires_at > %s"
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, (now,))
                rows = cursor.fetchall()
        return {row[0] for row in rows}

    @staticmethod
    def _table_exists(cursor, table_name: str) -> bool:
        cursor.execute("""
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = %s;
        """, (table_name,))
        return cursor.fetchone()[0] > 0

    def _setup_schema(self):
        """
        Internal function to set-up the database schema if the tables do not exist. Primarily used when being deployed in production.
        """
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                if not self._table_exists(cursor, 'bookings'):
                    logger.info("Setting up the bookings table.")
                    cursor.execute("""
                        CREATE TABLE bookings (
                        id serial PRIMARY KEY NOT NULL,
                        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                        slot_id text UNIQUE NOT NULL,
                        start_ts timestamp with time zone NOT NULL,
                        end_ts timestamp with time zone NOT NULL,
                        customer_name text NOT NULL,
                        customer_email text NOT NULL,
                        amount_cents integer NOT NULL CHECK (amount_cents >= 0),
                        currency text NOT NULL DEFAULT 'usd',
                        stripe_payment_intent text
                        );""")
                if not self._table_exists(cursor, 'slot_holds'):
                    logger.info("Setting up the slot_holds table.")
                    cursor.execute("""
                        CREATE TABLE slot_holds (
                        slot_id text PRIMARY KEY NOT NULL,
                        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL,
                        start_ts timestamp with time zone NOT NULL,
                        end_ts timestamp with time zone NOT NULL,
                        customer_name text NOT NULL,
                        customer_email text NOT NULL,
                        expires_at timestamp with time zone NOT NULL,
                        checkout_session_id text
                        );""")
                    cursor.execute("CREATE INDEX slot_holds_expires_at_idx ON slot_holds (expires_at);")
