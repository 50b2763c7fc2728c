import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import settings
from database import close_pool, initialize_database
from errors import LibraryError, NotFoundError
from library import Library

logger = logging.getLogger(__name__)

library = Library(initialize=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    initialize_database()
    logger.info("%s %s listening with database %s", settings.app_name, settings.app_version, database.DATABASE_FILE)
    try:
        yield
    finally:
        close_pool()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- Middleware ---
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


# --- Error handling ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.debug("Rejected body for %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"success": False, "error": "Datos de entrada inválidos"})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content={"success": False, "error": "Ruta no encontrada"})
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Error interno del servidor",
            "message": "Algo salió mal" if settings.is_production else str(exc),
        },
    )


def _success(data: Any = None, message: Optional[str] = None) -> dict:
    """Build the success envelope; ``data`` is left out when there is none."""
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


# --- Models ---
class EmpleadoModel(BaseModel):
    nombre_empleado: str | None = None


class EstudianteCreateModel(BaseModel):
    id_estudiante: Union[str, int, None] = None
    nombre_estudiante: str | None = None
    carrera: str | None = None


class EstudianteUpdateModel(BaseModel):
    nombre_estudiante: str | None = None
    carrera: str | None = None


class LibroCreateModel(BaseModel):
    isbn: Union[str, int, None] = None
    titulo: str | None = None
    autor: str | None = None


class LibroUpdateModel(BaseModel):
    titulo: str | None = None
    autor: str | None = None


class PrestamoModel(BaseModel):
    id_estudiante: Union[str, int, None] = None
    isbn: Union[str, int, None] = None
    fecha_prestamo: str | None = Field(default=None, description="Fecha ISO AAAA-MM-DD")
    fecha_devolucion: str | None = Field(default=None, description="Vacía mientras el préstamo está pendiente")
    id_empleado_responsable: Union[int, str, None] = None


# --- Empleados ---
@app.get("/api/empleados")
def list_empleados():
    """List every employee ordered by id."""
    return _success([e.to_dict() for e in library.list_empleados()])


@app.get("/api/empleados/{id_empleado}")
def get_empleado(id_empleado: str):
    empleado = library.find_empleado(id_empleado)
    if not empleado:
        raise NotFoundError("Empleado no encontrado")
    return _success(empleado.to_dict())


@app.post("/api/empleados", status_code=201)
def create_empleado(payload: EmpleadoModel):
    empleado = library.add_empleado(payload.nombre_empleado)
    return _success(empleado.to_dict(), "Empleado creado exitosamente")


@app.put("/api/empleados/{id_empleado}")
def update_empleado(id_empleado: str, payload: EmpleadoModel):
    empleado = library.update_empleado(id_empleado, payload.nombre_empleado)
    if not empleado:
        raise NotFoundError("Empleado no encontrado")
    return _success(empleado.to_dict(), "Empleado actualizado exitosamente")


@app.delete("/api/empleados/{id_empleado}")
def delete_empleado(id_empleado: str):
    """Delete an employee unless a loan still references it."""
    if not library.remove_empleado(id_empleado):
        raise NotFoundError("Empleado no encontrado")
    return _success(message="Empleado eliminado exitosamente")


# --- Estudiantes ---
@app.get("/api/estudiantes")
def list_estudiantes():
    return _success([e.to_dict() for e in library.list_estudiantes()])


@app.get("/api/estudiantes/{id_estudiante}")
def get_estudiante(id_estudiante: str):
    estudiante = library.find_estudiante(id_estudiante)
    if not estudiante:
        raise NotFoundError("Estudiante no encontrado")
    return _success(estudiante.to_dict())


@app.post("/api/estudiantes", status_code=201)
def create_estudiante(payload: EstudianteCreateModel):
    estudiante = library.add_estudiante(payload.id_estudiante, payload.nombre_estudiante, payload.carrera)
    return _success(estudiante.to_dict(), "Estudiante creado exitosamente")


@app.put("/api/estudiantes/{id_estudiante}")
def update_estudiante(id_estudiante: str, payload: EstudianteUpdateModel):
    estudiante = library.update_estudiante(id_estudiante, payload.nombre_estudiante, payload.carrera)
    if not estudiante:
        raise NotFoundError("Estudiante no encontrado")
    return _success(estudiante.to_dict(), "Estudiante actualizado exitosamente")


@app.delete("/api/estudiantes/{id_estudiante}")
def delete_estudiante(id_estudiante: str):
    if not library.remove_estudiante(id_estudiante):
        raise NotFoundError("Estudiante no encontrado")
    return _success(message="Estudiante eliminado exitosamente")


# --- Libros ---
@app.get("/api/libros")
def list_libros():
    """List the catalogue ordered by title."""
    return _success([l.to_dict() for l in library.list_libros()])


@app.get("/api/libros/{isbn}")
def get_libro(isbn: str):
    libro = library.find_libro(isbn)
    if not libro:
        raise NotFoundError("Libro no encontrado")
    return _success(libro.to_dict())


@app.post("/api/libros", status_code=201)
def create_libro(payload: LibroCreateModel):
    libro = library.add_libro(payload.isbn, payload.titulo, payload.autor)
    return _success(libro.to_dict(), "Libro creado exitosamente")


@app.put("/api/libros/{isbn}")
def update_libro(isbn: str, payload: LibroUpdateModel):
    libro = library.update_libro(isbn, payload.titulo, payload.autor)
    if not libro:
        raise NotFoundError("Libro no encontrado")
    return _success(libro.to_dict(), "Libro actualizado exitosamente")


@app.delete("/api/libros/{isbn}")
def delete_libro(isbn: str):
    if not library.remove_libro(isbn):
        raise NotFoundError("Libro no encontrado")
    return _success(message="Libro eliminado exitosamente")


# --- Préstamos ---
@app.get("/api/prestamos")
def list_prestamos():
    """List loans joined with student, book and employee, newest first."""
    return _success(library.list_prestamos())


@app.get("/api/prestamos/estudiante/{id_estudiante}")
def list_prestamos_estudiante(id_estudiante: str):
    return _success(library.list_prestamos_por_estudiante(id_estudiante))


@app.get("/api/prestamos/libro/{isbn}")
def list_prestamos_libro(isbn: str):
    return _success(library.list_prestamos_por_libro(isbn))


@app.get("/api/prestamos/{id_prestamo}")
def get_prestamo(id_prestamo: str):
    prestamo = library.find_prestamo(id_prestamo)
    if not prestamo:
        raise NotFoundError("Préstamo no encontrado")
    return _success(prestamo)


@app.post("/api/prestamos", status_code=201)
def create_prestamo(payload: PrestamoModel):
    prestamo = library.add_prestamo(
        payload.id_estudiante,
        payload.isbn,
        payload.fecha_prestamo,
        payload.id_empleado_responsable,
        fecha_devolucion=payload.fecha_devolucion,
    )
    return _success(prestamo.to_dict(), "Préstamo creado exitosamente")


@app.put("/api/prestamos/{id_prestamo}")
def update_prestamo(id_prestamo: str, payload: PrestamoModel):
    """Replace a loan's fields; sending fecha_devolucion registers the return."""
    prestamo = library.update_prestamo(
        id_prestamo,
        payload.id_estudiante,
        payload.isbn,
        payload.fecha_prestamo,
        payload.id_empleado_responsable,
        fecha_devolucion=payload.fecha_devolucion,
    )
    if not prestamo:
        raise NotFoundError("Préstamo no encontrado")
    return _success(prestamo.to_dict(), "Préstamo actualizado exitosamente")


@app.delete("/api/prestamos/{id_prestamo}")
def delete_prestamo(id_prestamo: str):
    if not library.remove_prestamo(id_prestamo):
        raise NotFoundError("Préstamo no encontrado")
    return _success(message="Préstamo eliminado exitosamente")


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a quick database probe."""
    db_ok = True
    try:
        with database.connection() as conn:
            conn.execute("SELECT 1")
    except sqlite3.Error:
        logger.warning("Health check could not reach %s", database.DATABASE_FILE)
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Static files ---
if os.path.isdir(settings.static_dir):
    app.mount("/static", StaticFiles(directory=settings.static_dir), name="static")


@app.get("/")
def read_root():
    """Serve the frontend's index.html, or a small banner when there is none."""
    index = os.path.join(settings.static_dir, "index.html")
    if os.path.isfile(index):
        return FileResponse(index)
    return _success({"name": settings.app_name, "version": settings.app_version, "api": settings.api_prefix})
