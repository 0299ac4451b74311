import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from message_relay.errors import ContentTooLongError, MessageNotFoundError, StoreError
from message_relay.utils import utc_now

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for the given database URL.

    SQLite connections are shared between the scheduler thread and request
    handlers, so check_same_thread is disabled. In-memory SQLite databases use a
    single static connection, otherwise every connection would see its own
    empty database.
    """
    connect_args = {}
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            engine_kwargs["poolclass"] = StaticPool

    return create_engine(database_url, connect_args=connect_args, echo=False, **engine_kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    """
    Create the session factory used by the repository.

    expire_on_commit is disabled so messages returned from a closed session can
    still be read by the caller.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {engine.url}")
    try:
        # Import models to register them with Base.metadata
        from message_relay.models import Message  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health(session_factory: sessionmaker) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

            from message_relay.models import Message

            # Selecting from the table fails if the schema was never applied
            db.query(Message.id).limit(1).all()
            logger.debug("Messages table found, schema is applied")
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository
# =============================================================================

class MessageRepository:
    """
    Durable store for outbox messages.

    Every method opens its own short-lived session, so a single repository can be
    shared by the dispatch scheduler thread and request handlers.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_message(self, to: str, content: str):
        """
        Create a new message in PENDING state.

        Args:
            to: Recipient phone number
            content: Message text, at most 160 characters

        Returns:
            The created Message with its store-assigned id and timestamps

        Raises:
            ContentTooLongError: content is longer than 160 characters (nothing is written)
            StoreError: the insert failed
        """
        from message_relay.models import MAX_CONTENT_LENGTH, Message, MessageStatus

        if len(content) > MAX_CONTENT_LENGTH:
            logger.warning(f"Rejected message for {to}: content length {len(content)} > {MAX_CONTENT_LENGTH}")
            raise ContentTooLongError(len(content), MAX_CONTENT_LENGTH)

        now = utc_now()
        message = Message(
            to=to,
            content=content,
            status=MessageStatus.PENDING.value,
            external_message_id="",
            created_at=now,
            updated_at=now,
        )

        with self._session_factory() as db:
            try:
                db.add(message)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to create message: {e}")
                raise StoreError(f"failed to create message: {e}") from e

        logger.debug("Message created successfully", extra={"message_id": message.id})
        return message

    def get_message(self, message_id: int):
        """
        Retrieve a message by its ID.

        Returns:
            Message object if found, None otherwise
        """
        from message_relay.models import Message

        try:
            with self._session_factory() as db:
                return db.query(Message).filter(Message.id == message_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up message {message_id}: {e}")
            raise StoreError(f"failed to look up message: {e}") from e

    def get_pending_messages(self, limit: int) -> List:
        """
        Retrieve up to `limit` PENDING messages, oldest first.

        Ordering: created_at ASC, id ASC (deterministic for equal timestamps)
        """
        from message_relay.models import Message, MessageStatus

        try:
            with self._session_factory() as db:
                messages = (
                    db.query(Message)
                    .filter(Message.status == MessageStatus.PENDING.value)
                    .order_by(Message.created_at.asc(), Message.id.asc())
                    .limit(limit)
                    .all()
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to query unsent messages: {e}")
            raise StoreError(f"failed to query unsent messages: {e}") from e

        logger.debug(f"Retrieved {len(messages)} unsent messages")
        return messages

    def get_sent_messages(self, limit: int) -> List:
        """
        Retrieve up to `limit` SENT messages, newest first.

        Ordering: sent_at DESC, id DESC
        """
        from message_relay.models import Message, MessageStatus

        try:
            with self._session_factory() as db:
                messages = (
                    db.query(Message)
                    .filter(Message.status == MessageStatus.SENT.value)
                    .order_by(Message.sent_at.desc(), Message.id.desc())
                    .limit(limit)
                    .all()
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to query sent messages: {e}")
            raise StoreError(f"failed to query sent messages: {e}") from e

        logger.debug(f"Retrieved {len(messages)} sent messages")
        return messages

    def update_message_status(
        self,
        message_id: int,
        status,
        external_message_id: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> None:
        """
        Set the status of a message and, when given, its external id and send time.

        The change is a single UPDATE statement, so a message deleted while the call
        is in flight is reported the same way as one that never existed.

        Raises:
            MessageNotFoundError: no message with `message_id` exists (nothing changes)
            StoreError: the update failed
        """
        from message_relay.models import Message, MessageStatus

        status_value = MessageStatus(status).value
        values = {
            Message.status: status_value,
            Message.external_message_id: external_message_id or "",
            Message.sent_at: sent_at,
            Message.updated_at: utc_now(),
        }

        with self._session_factory() as db:
            try:
                rows_affected = (
                    db.query(Message)
                    .filter(Message.id == message_id)
                    .update(values, synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to update message status: {e}", extra={"message_id": message_id})
                raise StoreError(f"failed to update message status: {e}") from e

        if rows_affected == 0:
            logger.warning("No message found with given ID", extra={"message_id": message_id})
            raise MessageNotFoundError(message_id)

        logger.debug(
            "Message status updated successfully",
            extra={"message_id": message_id, "status": status_value},
        )
