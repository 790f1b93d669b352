"""SQL schema migrations for PostgreSQL.

Discovers timestamped ``.sql`` migration files, applies and rolls them back
under a global advisory lock, and keeps a ledger of applied versions.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
