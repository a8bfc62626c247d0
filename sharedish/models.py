"""
SQLAlchemy ORM models for the Chat Store.

This module contains database table definitions using SQLAlchemy.
For Pydantic event and response schemas, see schemas.py.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from sharedish.storage import Base


class User(Base):
    """
    Marketplace user, read here only to build sender display names.

    Table: users
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ChatThread(Base):
    """
    Conversation between two users about one post.

    Table: chat_threads
    Unique key: (post_id, user_low, user_high); the participant pair is
    stored sorted so that either sender order maps to the same row.
    """
    __tablename__ = "chat_threads"
    __table_args__ = (
        UniqueConstraint("post_id", "user_low", "user_high", name="uq_chat_thread_post_pair"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(String, nullable=False, index=True)
    user_low = Column(String, nullable=False, index=True)
    user_high = Column(String, nullable=False, index=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    updated_at = Column(String, nullable=False)  # Bumped on every append

    messages = relationship(
        "ChatMessage",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )

    @property
    def participants(self) -> tuple[str, str]:
        return (self.user_low, self.user_high)

    def other_participant(self, user_id: str) -> str:
        return self.user_high if user_id == self.user_low else self.user_low


class ChatMessage(Base):
    """
    Immutable message appended to a thread.

    Table: chat_messages
    Order within a thread: id ASC (commit order)
    """
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(
        Integer,
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id = Column(String, nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_at = Column(String, nullable=False, index=True)  # Server time ISO-8601
    read = Column(Boolean, nullable=False, default=False)

    thread = relationship("ChatThread", back_populates="messages")


class ChatReport(Base):
    """
    User report about a conversation.

    Table: chat_reports
    Reports outlive the thread they point at, so thread_id is not a foreign key.
    """
    __tablename__ = "chat_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Integer, nullable=False, index=True)
    reporter_id = Column(String, nullable=False)
    reported_user_id = Column(String, nullable=False)
    message = Column(Text, nullable=False, default="")
    created_at = Column(String, nullable=False)


class UserBlock(Base):
    """
    One user blocking another.

    Table: user_blocks
    """
    __tablename__ = "user_blocks"
    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="uq_user_block_pair"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    blocker_id = Column(String, nullable=False, index=True)
    blocked_id = Column(String, nullable=False)
    created_at = Column(String, nullable=False)
