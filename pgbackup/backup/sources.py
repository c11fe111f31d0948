"""
Database source handling for backup operations.

Enumerates the databases on a PostgreSQL cluster with psql and derives
per-database connection URLs from the cluster URL.
"""

import logging
import subprocess
from typing import List
from urllib.parse import urlsplit, urlunsplit


logger = logging.getLogger(__name__)

LIST_DATABASES_QUERY = (
    "SELECT datname FROM pg_database "
    "WHERE datistemplate = false AND datname NOT IN ('postgres');"
)

EXCLUDED_DATABASES = {'postgres', 'template0', 'template1'}


class SourceError(Exception):
    """Raised when a backup source cannot be read."""
    pass


class DatabaseConnectionError(SourceError):
    """Raised when the cluster cannot be queried for its databases."""
    pass


def list_databases(cluster_url: str) -> List[str]:
    """
    List backup-eligible databases on a cluster.

    Template databases and the administrative 'postgres' database are
    never returned.

    Args:
        cluster_url: Connection URL of any database on the cluster

    Returns:
        Database names in the order psql reports them

    Raises:
        DatabaseConnectionError: If psql cannot be run or exits with an error
    """
    # -A = unaligned, -t = tuples only: one name per line
    cmd = ['psql', cluster_url, '-At', '-c', LIST_DATABASES_QUERY]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise DatabaseConnectionError(f"Failed to run psql: {e}")

    stderr = result.stderr.strip()

    if result.returncode != 0:
        raise DatabaseConnectionError(
            f"psql exited with status {result.returncode}: {stderr}"
        )

    if stderr:
        logger.warning(f"psql reported: {stderr}")

    return [
        name for name in (line.strip() for line in result.stdout.splitlines())
        if name and name not in EXCLUDED_DATABASES
    ]


def build_database_url(cluster_url: str, db_name: str) -> str:
    """
    Point a cluster URL at a specific database.

    The last path segment is replaced with the database name; credentials,
    host, port and query parameters are left untouched.

    Args:
        cluster_url: Connection URL of the cluster
        db_name: Target database name

    Returns:
        Connection URL for db_name
    """
    parts = urlsplit(cluster_url)
    path = parts.path

    if '/' in path.strip('/'):
        base = path.rstrip('/').rsplit('/', 1)[0]
        new_path = f"{base}/{db_name}"
    else:
        new_path = f"/{db_name}"

    return urlunsplit((parts.scheme, parts.netloc, new_path, parts.query, parts.fragment))


def redact_url(url: str) -> str:
    """Strip the password from a connection URL so it can be logged."""
    parts = urlsplit(url)
    if parts.password is None:
        return url

    # Host and port exactly as written, IPv6 brackets included
    host = parts.netloc.rpartition('@')[2]
    netloc = f"{parts.username}:***@{host}" if parts.username else f":***@{host}"

    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
