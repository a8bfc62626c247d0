"""Share Dish chat relay: Socket.IO messaging with a SQL-backed Chat Store."""

__version__ = "1.0.0"
