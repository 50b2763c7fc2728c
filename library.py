import logging
import sqlite3
from functools import wraps
from typing import Any, Dict, List, Optional, Union

import database
from database import initialize_database
from errors import StorageError, ValidationError
from models import Empleado, Estudiante, Libro, Prestamo
from validators import DateValidator, TextValidator

logger = logging.getLogger(__name__)

_LOAN_DETAIL_SELECT = """
    SELECT
        p.id_prestamo,
        p.fecha_prestamo,
        p.fecha_devolucion,
        e.id_estudiante,
        e.nombre_estudiante,
        e.carrera,
        l.isbn,
        l.titulo,
        l.autor,
        emp.id_empleado,
        emp.nombre_empleado
    FROM prestamos p
    INNER JOIN estudiantes e ON p.id_estudiante = e.id_estudiante
    INNER JOIN libros l ON p.isbn = l.isbn
    INNER JOIN empleados emp ON p.id_empleado_responsable = emp.id_empleado
"""


def _storage_errors(message: str):
    """Turn any sqlite3 failure inside the wrapped call into a StorageError."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except sqlite3.Error as exc:
                logger.exception("%s: %s", message, exc)
                raise StorageError(message) from exc
        return wrapper
    return decorator


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(exc)


def _is_foreign_key_violation(exc: sqlite3.IntegrityError) -> bool:
    return "FOREIGN KEY constraint failed" in str(exc)


def _row_id(value: Any) -> Any:
    """Numeric text becomes an int key; anything else is left as is and matches no row."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


class Library:
    """Manages employees, students, books and loans stored in SQLite.

    Every write goes straight to the database and relies on the schema's
    primary keys and foreign keys; integrity errors are translated into
    ValidationError with the message the API returns to the client.
    """

    def __init__(self, db_file: Optional[str] = None, initialize: bool = True) -> None:
        if db_file:
            database.configure(db_file)
        # The API defers schema creation to its startup hook
        if initialize:
            initialize_database()

    # ------------------------- Empleados ------------------------- #
    @_storage_errors("Error al obtener empleados")
    def list_empleados(self) -> List[Empleado]:
        with database.connection() as conn:
            rows = conn.execute("SELECT * FROM empleados ORDER BY id_empleado").fetchall()
            return [Empleado.from_dict(dict(row)) for row in rows]

    @_storage_errors("Error al obtener empleado")
    def find_empleado(self, id_empleado: Union[int, str]) -> Optional[Empleado]:
        with database.connection() as conn:
            row = conn.execute("SELECT * FROM empleados WHERE id_empleado = ?", (_row_id(id_empleado),)).fetchone()
            return Empleado.from_dict(dict(row)) if row else None

    @_storage_errors("Error al crear empleado")
    def add_empleado(self, nombre_empleado: Any) -> Empleado:
        fields = TextValidator.require(
            {"nombre_empleado": nombre_empleado},
            ["nombre_empleado"],
            "El nombre del empleado es requerido",
        )
        with database.connection() as conn:
            cursor = conn.execute("INSERT INTO empleados (nombre_empleado) VALUES (?)", (fields["nombre_empleado"],))
            row = conn.execute("SELECT * FROM empleados WHERE id_empleado = ?", (cursor.lastrowid,)).fetchone()
        empleado = Empleado.from_dict(dict(row))
        logger.info("Created empleado #%s", empleado.id_empleado)
        return empleado

    @_storage_errors("Error al actualizar empleado")
    def update_empleado(self, id_empleado: Union[int, str], nombre_empleado: Any) -> Optional[Empleado]:
        """Rename an employee. Returns the updated row or None if the id is unknown."""
        fields = TextValidator.require(
            {"nombre_empleado": nombre_empleado},
            ["nombre_empleado"],
            "El nombre del empleado es requerido",
        )
        with database.connection() as conn:
            cursor = conn.execute(
                "UPDATE empleados SET nombre_empleado = ? WHERE id_empleado = ?",
                (fields["nombre_empleado"], _row_id(id_empleado)),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM empleados WHERE id_empleado = ?", (_row_id(id_empleado),)).fetchone()
        return Empleado.from_dict(dict(row))

    @_storage_errors("Error al eliminar empleado")
    def remove_empleado(self, id_empleado: Union[int, str]) -> bool:
        with database.connection() as conn:
            try:
                cursor = conn.execute("DELETE FROM empleados WHERE id_empleado = ?", (_row_id(id_empleado),))
            except sqlite3.IntegrityError as exc:
                if _is_foreign_key_violation(exc):
                    raise ValidationError(
                        "No se puede eliminar el empleado porque tiene préstamos asociados"
                    ) from exc
                raise
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted empleado #%s", id_empleado)
        return deleted

    # ------------------------- Estudiantes ------------------------- #
    @_storage_errors("Error al obtener estudiantes")
    def list_estudiantes(self) -> List[Estudiante]:
        with database.connection() as conn:
            rows = conn.execute("SELECT * FROM estudiantes ORDER BY id_estudiante").fetchall()
            return [Estudiante.from_dict(dict(row)) for row in rows]

    @_storage_errors("Error al obtener estudiante")
    def find_estudiante(self, id_estudiante: str) -> Optional[Estudiante]:
        with database.connection() as conn:
            row = conn.execute("SELECT * FROM estudiantes WHERE id_estudiante = ?", (str(id_estudiante),)).fetchone()
            return Estudiante.from_dict(dict(row)) if row else None

    @_storage_errors("Error al crear estudiante")
    def add_estudiante(self, id_estudiante: Any, nombre_estudiante: Any, carrera: Any) -> Estudiante:
        fields = TextValidator.require(
            {"id_estudiante": id_estudiante, "nombre_estudiante": nombre_estudiante, "carrera": carrera},
            ["id_estudiante", "nombre_estudiante", "carrera"],
            "Todos los campos son requeridos: id_estudiante, nombre_estudiante, carrera",
        )
        estudiante = Estudiante(**fields)
        with database.connection() as conn:
            try:
                conn.execute(
                    "INSERT INTO estudiantes (id_estudiante, nombre_estudiante, carrera) VALUES (?, ?, ?)",
                    (estudiante.id_estudiante, estudiante.nombre_estudiante, estudiante.carrera),
                )
            except sqlite3.IntegrityError as exc:
                if _is_unique_violation(exc):
                    raise ValidationError("Ya existe un estudiante con ese ID") from exc
                raise
            row = conn.execute(
                "SELECT * FROM estudiantes WHERE id_estudiante = ?", (estudiante.id_estudiante,)
            ).fetchone()
        logger.info("Created estudiante %s", estudiante.id_estudiante)
        return Estudiante.from_dict(dict(row))

    @_storage_errors("Error al actualizar estudiante")
    def update_estudiante(self, id_estudiante: str, nombre_estudiante: Any, carrera: Any) -> Optional[Estudiante]:
        """Update name and career; the id itself never changes."""
        fields = TextValidator.require(
            {"nombre_estudiante": nombre_estudiante, "carrera": carrera},
            ["nombre_estudiante", "carrera"],
            "Los campos nombre_estudiante y carrera son requeridos",
        )
        with database.connection() as conn:
            cursor = conn.execute(
                "UPDATE estudiantes SET nombre_estudiante = ?, carrera = ? WHERE id_estudiante = ?",
                (fields["nombre_estudiante"], fields["carrera"], str(id_estudiante)),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM estudiantes WHERE id_estudiante = ?", (str(id_estudiante),)).fetchone()
        return Estudiante.from_dict(dict(row))

    @_storage_errors("Error al eliminar estudiante")
    def remove_estudiante(self, id_estudiante: str) -> bool:
        with database.connection() as conn:
            try:
                cursor = conn.execute("DELETE FROM estudiantes WHERE id_estudiante = ?", (str(id_estudiante),))
            except sqlite3.IntegrityError as exc:
                if _is_foreign_key_violation(exc):
                    raise ValidationError(
                        "No se puede eliminar el estudiante porque tiene préstamos asociados"
                    ) from exc
                raise
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted estudiante %s", id_estudiante)
        return deleted

    # ------------------------- Libros ------------------------- #
    @_storage_errors("Error al obtener libros")
    def list_libros(self) -> List[Libro]:
        with database.connection() as conn:
            rows = conn.execute("SELECT * FROM libros ORDER BY titulo").fetchall()
            return [Libro.from_dict(dict(row)) for row in rows]

    @_storage_errors("Error al obtener libro")
    def find_libro(self, isbn: str) -> Optional[Libro]:
        with database.connection() as conn:
            row = conn.execute("SELECT * FROM libros WHERE isbn = ?", (str(isbn),)).fetchone()
            return Libro.from_dict(dict(row)) if row else None

    @_storage_errors("Error al crear libro")
    def add_libro(self, isbn: Any, titulo: Any, autor: Any) -> Libro:
        fields = TextValidator.require(
            {"isbn": isbn, "titulo": titulo, "autor": autor},
            ["isbn", "titulo", "autor"],
            "Todos los campos son requeridos: isbn, titulo, autor",
        )
        libro = Libro(**fields)
        with database.connection() as conn:
            try:
                conn.execute(
                    "INSERT INTO libros (isbn, titulo, autor) VALUES (?, ?, ?)",
                    (libro.isbn, libro.titulo, libro.autor),
                )
            except sqlite3.IntegrityError as exc:
                if _is_unique_violation(exc):
                    raise ValidationError("Ya existe un libro con ese ISBN") from exc
                raise
            row = conn.execute("SELECT * FROM libros WHERE isbn = ?", (libro.isbn,)).fetchone()
        logger.info("Created libro %s", libro.isbn)
        return Libro.from_dict(dict(row))

    @_storage_errors("Error al actualizar libro")
    def update_libro(self, isbn: str, titulo: Any, autor: Any) -> Optional[Libro]:
        fields = TextValidator.require(
            {"titulo": titulo, "autor": autor},
            ["titulo", "autor"],
            "Los campos titulo y autor son requeridos",
        )
        with database.connection() as conn:
            cursor = conn.execute(
                "UPDATE libros SET titulo = ?, autor = ? WHERE isbn = ?",
                (fields["titulo"], fields["autor"], str(isbn)),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM libros WHERE isbn = ?", (str(isbn),)).fetchone()
        return Libro.from_dict(dict(row))

    @_storage_errors("Error al eliminar libro")
    def remove_libro(self, isbn: str) -> bool:
        with database.connection() as conn:
            try:
                cursor = conn.execute("DELETE FROM libros WHERE isbn = ?", (str(isbn),))
            except sqlite3.IntegrityError as exc:
                if _is_foreign_key_violation(exc):
                    raise ValidationError(
                        "No se puede eliminar el libro porque tiene préstamos asociados"
                    ) from exc
                raise
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted libro %s", isbn)
        return deleted

    # ------------------------- Préstamos ------------------------- #
    @_storage_errors("Error al obtener préstamos")
    def list_prestamos(self) -> List[Dict[str, Any]]:
        """All loans joined with student, book and employee, newest first."""
        with database.connection() as conn:
            rows = conn.execute(
                _LOAN_DETAIL_SELECT + " ORDER BY p.fecha_prestamo DESC, p.id_prestamo DESC"
            ).fetchall()
            return [dict(row) for row in rows]

    @_storage_errors("Error al obtener préstamo")
    def find_prestamo(self, id_prestamo: Union[int, str]) -> Optional[Dict[str, Any]]:
        with database.connection() as conn:
            row = conn.execute(_LOAN_DETAIL_SELECT + " WHERE p.id_prestamo = ?", (_row_id(id_prestamo),)).fetchone()
            return dict(row) if row else None

    @_storage_errors("Error al crear préstamo")
    def add_prestamo(self, id_estudiante: Any, isbn: Any, fecha_prestamo: Any, id_empleado_responsable: Any,
                     fecha_devolucion: Any = None) -> Prestamo:
        prestamo = self._build_prestamo(id_estudiante, isbn, fecha_prestamo, id_empleado_responsable, fecha_devolucion)
        with database.connection() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO prestamos (id_estudiante, isbn, fecha_prestamo, fecha_devolucion, id_empleado_responsable)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (prestamo.id_estudiante, prestamo.isbn, prestamo.fecha_prestamo,
                     prestamo.fecha_devolucion, prestamo.id_empleado_responsable),
                )
            except sqlite3.IntegrityError as exc:
                if _is_foreign_key_violation(exc):
                    raise ValidationError(self._missing_reference(conn, prestamo)) from exc
                raise
            row = conn.execute("SELECT * FROM prestamos WHERE id_prestamo = ?", (cursor.lastrowid,)).fetchone()
        created = Prestamo.from_dict(dict(row))
        logger.info("Created prestamo #%s (%s -> %s)", created.id_prestamo, created.isbn, created.id_estudiante)
        return created

    @_storage_errors("Error al actualizar préstamo")
    def update_prestamo(self, id_prestamo: Union[int, str], id_estudiante: Any, isbn: Any, fecha_prestamo: Any,
                        id_empleado_responsable: Any, fecha_devolucion: Any = None) -> Optional[Prestamo]:
        """Rewrite every field of a loan; setting fecha_devolucion marks it returned.

        Returns None when the loan does not exist. An unknown loan never reaches
        the foreign key checks because the UPDATE matches no row.
        """
        prestamo = self._build_prestamo(id_estudiante, isbn, fecha_prestamo, id_empleado_responsable, fecha_devolucion)
        with database.connection() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE prestamos
                    SET id_estudiante = ?, isbn = ?, fecha_prestamo = ?, fecha_devolucion = ?,
                        id_empleado_responsable = ?
                    WHERE id_prestamo = ?
                    """,
                    (prestamo.id_estudiante, prestamo.isbn, prestamo.fecha_prestamo,
                     prestamo.fecha_devolucion, prestamo.id_empleado_responsable, _row_id(id_prestamo)),
                )
            except sqlite3.IntegrityError as exc:
                if _is_foreign_key_violation(exc):
                    raise ValidationError(self._missing_reference(conn, prestamo)) from exc
                raise
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM prestamos WHERE id_prestamo = ?", (_row_id(id_prestamo),)).fetchone()
        return Prestamo.from_dict(dict(row))

    @_storage_errors("Error al eliminar préstamo")
    def remove_prestamo(self, id_prestamo: Union[int, str]) -> bool:
        with database.connection() as conn:
            cursor = conn.execute("DELETE FROM prestamos WHERE id_prestamo = ?", (_row_id(id_prestamo),))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted prestamo #%s", id_prestamo)
        return deleted

    @_storage_errors("Error al obtener préstamos del estudiante")
    def list_prestamos_por_estudiante(self, id_estudiante: str) -> List[Dict[str, Any]]:
        with database.connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    p.id_prestamo,
                    p.fecha_prestamo,
                    p.fecha_devolucion,
                    l.isbn,
                    l.titulo,
                    l.autor,
                    emp.nombre_empleado
                FROM prestamos p
                INNER JOIN libros l ON p.isbn = l.isbn
                INNER JOIN empleados emp ON p.id_empleado_responsable = emp.id_empleado
                WHERE p.id_estudiante = ?
                ORDER BY p.fecha_prestamo DESC, p.id_prestamo DESC
                """,
                (str(id_estudiante),),
            ).fetchall()
            return [dict(row) for row in rows]

    @_storage_errors("Error al obtener préstamos del libro")
    def list_prestamos_por_libro(self, isbn: str) -> List[Dict[str, Any]]:
        with database.connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    p.id_prestamo,
                    p.fecha_prestamo,
                    p.fecha_devolucion,
                    e.nombre_estudiante,
                    e.carrera,
                    emp.nombre_empleado
                FROM prestamos p
                INNER JOIN estudiantes e ON p.id_estudiante = e.id_estudiante
                INNER JOIN empleados emp ON p.id_empleado_responsable = emp.id_empleado
                WHERE p.isbn = ?
                ORDER BY p.fecha_prestamo DESC, p.id_prestamo DESC
                """,
                (str(isbn),),
            ).fetchall()
            return [dict(row) for row in rows]

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _build_prestamo(id_estudiante: Any, isbn: Any, fecha_prestamo: Any, id_empleado_responsable: Any,
                        fecha_devolucion: Any) -> Prestamo:
        """Validate loan input in order: required fields, then dates."""
        fields = TextValidator.require(
            {
                "id_estudiante": id_estudiante,
                "isbn": isbn,
                "fecha_prestamo": fecha_prestamo,
                "id_empleado_responsable": id_empleado_responsable,
            },
            ["id_estudiante", "isbn", "fecha_prestamo", "id_empleado_responsable"],
            "Los campos id_estudiante, isbn, fecha_prestamo e id_empleado_responsable son requeridos",
        )
        inicio = DateValidator.normalize(fields["fecha_prestamo"], "fecha_prestamo")
        fin = DateValidator.normalize(fecha_devolucion, "fecha_devolucion")
        DateValidator.check_return_after_loan(inicio, fin)
        # A non-numeric id matches no employee and is reported after the
        # student and book checks
        id_empleado = _row_id(fields["id_empleado_responsable"])
        return Prestamo(
            id_estudiante=str(fields["id_estudiante"]),
            isbn=str(fields["isbn"]),
            fecha_prestamo=inicio,
            fecha_devolucion=fin,
            id_empleado_responsable=id_empleado,
        )

    @staticmethod
    def _missing_reference(conn: sqlite3.Connection, prestamo: Prestamo) -> str:
        """Name the first reference of a rejected loan that does not exist."""
        checks = (
            ("SELECT 1 FROM estudiantes WHERE id_estudiante = ?", prestamo.id_estudiante, "El estudiante no existe"),
            ("SELECT 1 FROM libros WHERE isbn = ?", prestamo.isbn, "El libro no existe"),
            ("SELECT 1 FROM empleados WHERE id_empleado = ?", prestamo.id_empleado_responsable, "El empleado no existe"),
        )
        for query, key, message in checks:
            if conn.execute(query, (key,)).fetchone() is None:
                return message
        return "El préstamo hace referencia a registros inexistentes"

    def close(self) -> None:
        """Release pooled connections."""
        database.close_pool()
