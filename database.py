import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings

logger = logging.getLogger(__name__)

# Default database file, overridable through LIBRARY_DB_FILE or configure().
DATABASE_FILE = settings.database_file

# Connection pool shared by every request thread
_connection_pool: Optional[queue.Queue] = None
_pool_lock = threading.Lock()


def _new_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(DATABASE_FILE, timeout=settings.database_timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    # Referential integrity is enforced by the store, per connection
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def _initialize_connection_pool() -> None:
    """Fill the pool with ready-to-use connections."""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            return
        pool: queue.Queue = queue.Queue(maxsize=settings.database_pool_size)
        for _ in range(settings.database_pool_size):
            pool.put(_new_connection())
        _connection_pool = pool
        logger.info("Connection pool for %s initialized (%d connections)", DATABASE_FILE, settings.database_pool_size)


def get_db_connection() -> sqlite3.Connection:
    """Borrow a connection from the pool, opening an extra one if it is empty."""
    if _connection_pool is None:
        _initialize_connection_pool()
    try:
        return _connection_pool.get_nowait()
    except queue.Empty:
        return _new_connection()


def return_connection_to_pool(conn: sqlite3.Connection) -> None:
    """Hand a connection back for reuse; close it when the pool is full or gone."""
    pool = _connection_pool
    if pool is None:
        conn.close()
        return
    try:
        pool.put_nowait(conn)
    except queue.Full:
        conn.close()


def close_pool() -> None:
    """Close every pooled connection."""
    global _connection_pool
    with _pool_lock:
        pool, _connection_pool = _connection_pool, None
    if pool is None:
        return
    while True:
        try:
            pool.get_nowait().close()
        except queue.Empty:
            break
    logger.info("Connection pool closed")


def configure(db_file: str) -> None:
    """Point the module at another database file (tests, CLI --db)."""
    global DATABASE_FILE
    close_pool()
    DATABASE_FILE = db_file


@contextmanager
def connection() -> Iterator[sqlite3.Connection]:
    """Yield a pooled connection; commit on success, roll back on error."""
    conn = get_db_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        return_connection_to_pool(conn)


def create_tables() -> None:
    """Create the tables if they do not exist yet."""
    with connection() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS empleados (
                id_empleado INTEGER PRIMARY KEY AUTOINCREMENT,
                nombre_empleado TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS estudiantes (
                id_estudiante TEXT PRIMARY KEY,
                nombre_estudiante TEXT NOT NULL,
                carrera TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS libros (
                isbn TEXT PRIMARY KEY,
                titulo TEXT NOT NULL,
                autor TEXT NOT NULL
            )
        """)

        # RESTRICT keeps parents alive while a loan points at them
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS prestamos (
                id_prestamo INTEGER PRIMARY KEY AUTOINCREMENT,
                id_estudiante TEXT NOT NULL,
                isbn TEXT NOT NULL,
                fecha_prestamo DATE NOT NULL,
                fecha_devolucion DATE,
                id_empleado_responsable INTEGER NOT NULL,
                FOREIGN KEY (id_estudiante) REFERENCES estudiantes(id_estudiante)
                    ON DELETE RESTRICT ON UPDATE RESTRICT,
                FOREIGN KEY (isbn) REFERENCES libros(isbn)
                    ON DELETE RESTRICT ON UPDATE RESTRICT,
                FOREIGN KEY (id_empleado_responsable) REFERENCES empleados(id_empleado)
                    ON DELETE RESTRICT ON UPDATE RESTRICT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_libros_titulo ON libros(titulo)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_prestamos_estudiante ON prestamos(id_estudiante)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_prestamos_isbn ON prestamos(isbn)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_prestamos_empleado ON prestamos(id_empleado_responsable)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_prestamos_fecha ON prestamos(fecha_prestamo DESC)")


def initialize_database() -> None:
    """Initialize the database, creating tables when needed."""
    create_tables()
