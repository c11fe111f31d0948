"""
Dump handling for backup archives.

Runs pg_dump in tar format, gzips its output into a local archive and checks
that the archive actually contains data before it is handed to storage.
"""

import gzip
import logging
import os
import re
import shlex
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from typing import Optional

from .sources import redact_url


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

ARCHIVE_EXTENSION = 'tar.gz'


class DumpError(Exception):
    """Raised when pg_dump fails to produce an archive."""
    pass


class EmptyArchiveError(DumpError):
    """Raised when a produced archive is unreadable or holds no data."""
    pass


def dump_to_file(db_url: str, file_path: str, options: str = '') -> int:
    """
    Dump a database into a gzip-compressed tar archive.

    Args:
        db_url: Connection URL of the database to dump
        file_path: Destination path of the archive
        options: Extra pg_dump arguments, shell-quoted

    Returns:
        Size of the archive in bytes

    Raises:
        DumpError: If pg_dump cannot be run or exits with an error
        EmptyArchiveError: If the archive is invalid or empty
    """
    logger.info(f"Dumping {redact_url(db_url)} to file...")

    cmd = ['pg_dump', f'--dbname={db_url}', '--format=tar'] + shlex.split(options or '')

    # stderr goes to a file so a chatty pg_dump can't fill the pipe and stall
    with tempfile.TemporaryFile() as stderr_file:
        try:
            with gzip.open(file_path, 'wb') as archive, \
                    subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr_file) as process:
                shutil.copyfileobj(process.stdout, archive, CHUNK_SIZE)
        except OSError as e:
            raise DumpError(f"Failed to run pg_dump: {e}")

        stderr_file.seek(0)
        stderr = stderr_file.read().decode('utf-8', errors='replace').rstrip()

    if process.returncode != 0:
        raise DumpError(f"pg_dump exited with status {process.returncode}: {stderr}")

    validate_archive(file_path)

    # Not everything pg_dump prints on stderr is an error
    if stderr:
        logger.warning(f"pg_dump stderr: {stderr}")

    file_size = get_archive_size(file_path)
    logger.info("Backup archive file is valid")
    logger.info(f"Backup filesize: {format_size(file_size)}")

    if stderr:
        logger.warning(
            f"Potential warnings detected; Please ensure the backup file "
            f"\"{os.path.basename(file_path)}\" contains all needed data"
        )

    logger.info("DB dumped to file...")
    return file_size


def validate_archive(file_path: str):
    """
    Check that an archive decompresses to at least one byte.

    Args:
        file_path: Path to the gzip archive

    Raises:
        EmptyArchiveError: If the archive cannot be read or is empty
    """
    message = "Backup archive file is invalid or empty; check for errors above"

    try:
        with gzip.open(file_path, 'rb') as f:
            first_byte = f.read(1)
    except (OSError, EOFError) as e:
        raise EmptyArchiveError(f"{message} ({e})")

    if len(first_byte) != 1:
        raise EmptyArchiveError(message)


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """
    Build a key-safe ISO-8601 timestamp.

    Format: YYYY-MM-DDTHH-MM-SS-mmmZ (UTC, ':' and '.' replaced by '-')

    Args:
        now: Moment to format (default: current UTC time)

    Returns:
        Timestamp string
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)

    iso = f"{now.strftime('%Y-%m-%dT%H:%M:%S')}.{now.microsecond // 1000:03d}Z"
    return re.sub(r'[:.]+', '-', iso)


def generate_archive_filename(prefix: str, timestamp: str, db_name: Optional[str] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: {db_name}_{prefix}-{timestamp}.tar.gz, or {prefix}-{timestamp}.tar.gz
    when no database name is given (whole-cluster dump).
    """
    filename = f"{prefix}-{timestamp}.{ARCHIVE_EXTENSION}"
    if db_name:
        filename = f"{db_name}_{filename}"
    return filename


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        DumpError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise DumpError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise DumpError(f"Failed to get archive size: {e}")


def format_size(size_bytes: int) -> str:
    """Human readable size, e.g. '1.50 MB'."""
    size = float(size_bytes)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"
