"""Database module."""

from db.session import close_db, get_db, get_session_factory, init_db, store_transaction

__all__ = ["get_db", "get_session_factory", "init_db", "close_db", "store_transaction"]
