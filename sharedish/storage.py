import logging
from typing import Generator, Iterable, Optional

from sqlalchemy import create_engine, event, func, inspect, or_, select, text, update
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from sharedish.config import settings
from sharedish.errors import PersistenceFailure
from sharedish.utils import ordered_pair, utc_now_iso

logger = logging.getLogger(__name__)


def _connect_args(database_url: str) -> dict:
    # SQLite connections are handed to worker threads by the relay and FastAPI
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=False,
)

if settings.DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # SQLite ignores ON DELETE CASCADE and foreign keys unless asked per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from sharedish import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and the chat schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("chat_threads"):
            logger.error("Database schema not applied: 'chat_threads' table not found")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Chat Store: thread and message writes
# =============================================================================

def find_thread(db: Session, post_id: str, user_pair: Iterable[str]):
    """
    Find the thread for a post and an unordered pair of participants.

    Returns:
        ChatThread if found, None otherwise
    """
    from sharedish.models import ChatThread

    low, high = ordered_pair(user_pair)
    return db.execute(
        select(ChatThread).where(
            ChatThread.post_id == post_id,
            ChatThread.user_low == low,
            ChatThread.user_high == high,
        )
    ).scalar_one_or_none()


def _insert_thread(db: Session, post_id: str, low: str, high: str):
    """
    Insert a thread row without committing.

    If a concurrent writer created the same thread first, the unique
    constraint rejects the flush; the session is rolled back and the
    existing row is returned. Call this before any other pending write.
    """
    from sharedish.models import ChatThread

    now = utc_now_iso()
    thread = ChatThread(post_id=post_id, user_low=low, user_high=high, created_at=now, updated_at=now)

    db.add(thread)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(f"Thread already created concurrently: post={post_id}, users={low},{high}")
        existing = find_thread(db, post_id, (low, high))
        if existing is None:
            raise
        return existing

    logger.info(f"Thread created: id={thread.id}, post={post_id}, users={low},{high}")
    return thread


def create_thread(db: Session, post_id: str, user_pair: Iterable[str]):
    """Create and commit the thread for a post and participant pair."""
    low, high = ordered_pair(user_pair)
    thread = _insert_thread(db, post_id, low, high)
    db.commit()
    db.refresh(thread)
    return thread


def get_or_create_thread(db: Session, post_id: str, user_pair: Iterable[str]):
    """Locate the thread for (post, pair), creating it lazily on first send."""
    pair = ordered_pair(user_pair)
    thread = find_thread(db, post_id, pair)
    if thread is not None:
        return thread
    return create_thread(db, post_id, pair)


def append_message(db: Session, thread_id: int, sender_id: str, text: str):
    """
    Append a message to a thread and commit.

    The thread's updated_at bump, the insert and any thread row still
    pending in the session commit together; commit order defines message
    order within the thread.

    Raises:
        NoResultFound: the thread no longer exists (nothing is written)

    Returns:
        The committed ChatMessage
    """
    from sharedish.models import ChatMessage, ChatThread

    created_at = utc_now_iso()
    result = db.execute(
        update(ChatThread).where(ChatThread.id == thread_id).values(updated_at=created_at)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NoResultFound(f"thread {thread_id} no longer exists")

    message = ChatMessage(thread_id=thread_id, sender_id=sender_id, text=text, created_at=created_at, read=False)
    db.add(message)
    db.commit()
    db.refresh(message)
    logger.debug(f"Message appended: id={message.id}, thread={thread_id}, sender={sender_id}")
    return message


def get_display_name(db: Session, user_id: str) -> str:
    """Return "<first> <last>" for a user, or "Someone" when unknown."""
    from sharedish.models import User

    user = db.get(User, user_id)
    if user is None or not user.display_name:
        return "Someone"
    return user.display_name


def persist_message(db: Session, post_id: str, sender_id: str, receiver_id: str, text: str):
    """
    Locate-or-create the thread and append one message to it.

    Used by the relay before any broadcast. A new thread is only flushed,
    so it commits in the same transaction as its first message. Any
    database error rolls the session back and is raised as
    PersistenceFailure: a failed send leaves neither a thread nor a message.

    Returns:
        Tuple of (thread, message, sender display name)
    """
    try:
        sender_name = get_display_name(db, sender_id)
        low, high = ordered_pair((sender_id, receiver_id))
        thread = find_thread(db, post_id, (low, high))
        if thread is None:
            thread = _insert_thread(db, post_id, low, high)
        message = append_message(db, thread.id, sender_id, text)
        return thread, message, sender_name
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to persist message for post {post_id}: {e}")
        raise PersistenceFailure() from e


# =============================================================================
# Chat Store: read path and user actions
# =============================================================================

def get_thread(db: Session, thread_id: int):
    from sharedish.models import ChatThread

    return db.get(ChatThread, thread_id)


def get_thread_messages(db: Session, thread_id: int) -> list:
    """Return a thread's messages in commit order."""
    from sharedish.models import ChatMessage

    return list(
        db.execute(
            select(ChatMessage).where(ChatMessage.thread_id == thread_id).order_by(ChatMessage.id.asc())
        ).scalars()
    )


def get_blocked_ids(db: Session, user_id: str) -> set[str]:
    from sharedish.models import UserBlock

    return set(
        db.execute(select(UserBlock.blocked_id).where(UserBlock.blocker_id == user_id)).scalars()
    )


def list_threads_for_user(db: Session, user_id: str) -> list:
    """
    List the threads a user participates in, most recently updated first.

    Threads with a participant the user has blocked are left out.
    """
    from sharedish.models import ChatThread

    threads = db.execute(
        select(ChatThread)
        .where(or_(ChatThread.user_low == user_id, ChatThread.user_high == user_id))
        .order_by(ChatThread.updated_at.desc(), ChatThread.id.desc())
    ).scalars()

    blocked = get_blocked_ids(db, user_id)
    result = [t for t in threads if t.other_participant(user_id) not in blocked]
    logger.debug(f"Listed {len(result)} threads for user {user_id}")
    return result


def get_last_message(db: Session, thread_id: int):
    from sharedish.models import ChatMessage

    return db.execute(
        select(ChatMessage).where(ChatMessage.thread_id == thread_id).order_by(ChatMessage.id.desc()).limit(1)
    ).scalar_one_or_none()


def count_unread(db: Session, user_id: str) -> int:
    """Count unread messages sent to the user across all of their threads."""
    from sharedish.models import ChatMessage, ChatThread

    count = db.execute(
        select(func.count(ChatMessage.id))
        .join(ChatThread, ChatThread.id == ChatMessage.thread_id)
        .where(
            or_(ChatThread.user_low == user_id, ChatThread.user_high == user_id),
            ChatMessage.sender_id != user_id,
            ChatMessage.read.is_(False),
        )
    ).scalar()
    return count or 0


def mark_thread_read(db: Session, thread_id: int, user_id: str) -> int:
    """
    Mark the other participant's messages in a thread as read.

    Returns:
        Number of messages updated
    """
    from sharedish.models import ChatMessage

    result = db.execute(
        update(ChatMessage)
        .where(
            ChatMessage.thread_id == thread_id,
            ChatMessage.sender_id != user_id,
            ChatMessage.read.is_(False),
        )
        .values(read=True)
    )
    db.commit()
    return result.rowcount or 0


def delete_thread(db: Session, thread_id: int) -> bool:
    """
    Delete a thread and its messages.

    Returns:
        True if a thread was deleted, False if it did not exist
    """
    thread = get_thread(db, thread_id)
    if thread is None:
        return False
    db.delete(thread)
    db.commit()
    logger.info(f"Thread deleted: id={thread_id}")
    return True


def create_report(
    db: Session,
    thread_id: int,
    reporter_id: str,
    reported_user_id: str,
    message: Optional[str] = None
):
    from sharedish.models import ChatReport

    report = ChatReport(
        thread_id=thread_id,
        reporter_id=reporter_id,
        reported_user_id=reported_user_id,
        message=message or "",
        created_at=utc_now_iso(),
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    logger.info(f"Report created: id={report.id}, thread={thread_id}, reported={reported_user_id}")
    return report


def block_user(db: Session, blocker_id: str, blocked_id: str) -> bool:
    """
    Record that blocker_id has blocked blocked_id (idempotent).

    Returns:
        True if a new block was recorded, False if it already existed
    """
    from sharedish.models import UserBlock

    db.add(UserBlock(blocker_id=blocker_id, blocked_id=blocked_id, created_at=utc_now_iso()))
    try:
        db.commit()
    except IntegrityError:
        # Block already recorded
        db.rollback()
        logger.info(f"Duplicate block ignored: {blocker_id} -> {blocked_id}")
        return False

    logger.info(f"User blocked: {blocker_id} -> {blocked_id}")
    return True
