import sqlite3

import pytest

import database


def test_connections_enforce_foreign_keys(lib):
    conn = database.get_db_connection()
    try:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    finally:
        database.return_connection_to_pool(conn)


def test_schema_rejects_orphan_loans(lib):
    with pytest.raises(sqlite3.IntegrityError):
        with database.connection() as conn:
            conn.execute(
                "INSERT INTO prestamos (id_estudiante, isbn, fecha_prestamo, id_empleado_responsable) VALUES (?, ?, ?, ?)",
                ("E1", "111", "2024-03-01", 1),
            )


def test_connection_rolls_back_on_error(lib):
    with pytest.raises(RuntimeError):
        with database.connection() as conn:
            conn.execute("INSERT INTO empleados (nombre_empleado) VALUES (?)", ("Temporal",))
            raise RuntimeError("abort")

    assert lib.list_empleados() == []


def test_pool_takes_connections_back(lib):
    conn = database.get_db_connection()
    available = database._connection_pool.qsize()
    database.return_connection_to_pool(conn)
    assert database._connection_pool.qsize() == available + 1


def test_extra_connection_closed_when_pool_full(lib):
    extra = database._new_connection()
    database.return_connection_to_pool(extra)
    with pytest.raises(sqlite3.ProgrammingError):
        extra.execute("SELECT 1")


def test_configure_switches_database(lib, tmp_path):
    lib.add_empleado("Laura")

    database.configure(str(tmp_path / "otra.db"))
    database.initialize_database()

    assert database.DATABASE_FILE.endswith("otra.db")
    assert lib.list_empleados() == []
