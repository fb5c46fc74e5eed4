"""SQLite persistence layer.

All functions are async using aiosqlite.
Module-level connection, initialized by init_database().

  _connection  schema, init, teardown
  locations    message registry (layout:channel → message location)
"""

from serverswitch.db._connection import (
    _get_db,
    _init_test_database,
    close_database,
    init_database,
)
from serverswitch.db.locations import (
    get_location,
    list_location_keys,
    put_location,
    remove_location,
)

__all__ = [
    "_get_db",
    "_init_test_database",
    "close_database",
    "get_location",
    "init_database",
    "list_location_keys",
    "put_location",
    "remove_location",
]
