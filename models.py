from __future__ import annotations


class Empleado:
    """A library employee; the id is generated by the database."""

    def __init__(self, nombre_empleado: str, id_empleado: int | None = None) -> None:
        self.id_empleado = id_empleado
        self.nombre_empleado = nombre_empleado.strip()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.nombre_empleado} (#{self.id_empleado})"

    def to_dict(self) -> dict:
        return {"id_empleado": self.id_empleado, "nombre_empleado": self.nombre_empleado}

    @staticmethod
    def from_dict(data: dict) -> "Empleado":
        return Empleado(nombre_empleado=data["nombre_empleado"], id_empleado=data.get("id_empleado"))


class Estudiante:
    """A student, identified by a caller-supplied id."""

    def __init__(self, id_estudiante: str, nombre_estudiante: str, carrera: str) -> None:
        self.id_estudiante = str(id_estudiante).strip()
        self.nombre_estudiante = nombre_estudiante.strip()
        self.carrera = carrera.strip()

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.nombre_estudiante} - {self.carrera} ({self.id_estudiante})"

    def to_dict(self) -> dict:
        return {
            "id_estudiante": self.id_estudiante,
            "nombre_estudiante": self.nombre_estudiante,
            "carrera": self.carrera,
        }

    @staticmethod
    def from_dict(data: dict) -> "Estudiante":
        return Estudiante(
            id_estudiante=data["id_estudiante"],
            nombre_estudiante=data["nombre_estudiante"],
            carrera=data["carrera"],
        )


class Libro:
    """A single book in the catalogue, keyed by ISBN."""

    def __init__(self, isbn: str, titulo: str, autor: str) -> None:
        self.isbn = str(isbn).strip()
        self.titulo = titulo.strip()
        self.autor = autor.strip()

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.titulo} by {self.autor} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {"isbn": self.isbn, "titulo": self.titulo, "autor": self.autor}

    @staticmethod
    def from_dict(data: dict) -> "Libro":
        return Libro(isbn=data["isbn"], titulo=data["titulo"], autor=data["autor"])


class Prestamo:
    """A loan of a book to a student, registered by an employee.

    Dates are ISO ``YYYY-MM-DD`` strings; ``fecha_devolucion`` stays ``None``
    while the book has not been returned.
    """

    def __init__(self, id_estudiante: str, isbn: str, fecha_prestamo: str, id_empleado_responsable: int,
                 fecha_devolucion: str | None = None, id_prestamo: int | None = None) -> None:
        self.id_prestamo = id_prestamo
        self.id_estudiante = str(id_estudiante).strip()
        self.isbn = str(isbn).strip()
        self.fecha_prestamo = fecha_prestamo
        self.fecha_devolucion = fecha_devolucion
        self.id_empleado_responsable = id_empleado_responsable

    @property
    def pendiente(self) -> bool:
        """True while the loan is outstanding."""
        return self.fecha_devolucion is None

    def to_dict(self) -> dict:
        return {
            "id_prestamo": self.id_prestamo,
            "id_estudiante": self.id_estudiante,
            "isbn": self.isbn,
            "fecha_prestamo": self.fecha_prestamo,
            "fecha_devolucion": self.fecha_devolucion,
            "id_empleado_responsable": self.id_empleado_responsable,
        }

    @staticmethod
    def from_dict(data: dict) -> "Prestamo":
        return Prestamo(
            id_prestamo=data.get("id_prestamo"),
            id_estudiante=data["id_estudiante"],
            isbn=data["isbn"],
            fecha_prestamo=data["fecha_prestamo"],
            fecha_devolucion=data.get("fecha_devolucion"),
            id_empleado_responsable=data["id_empleado_responsable"],
        )
