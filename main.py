import subprocess
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

import typer

import database
from config import settings
from errors import LibraryError
from library import Library
from ui_helpers import print_record, print_rows, set_output_mode

app = typer.Typer(help="Biblioteca CLI")

# recurso -> (columns, list rows, find one by key)
_RESOURCES: Dict[str, Tuple[List[str], Callable[[Library], List[dict]], Callable[[Library, str], Optional[dict]]]] = {
    "empleados": (
        ["id_empleado", "nombre_empleado"],
        lambda lib: [e.to_dict() for e in lib.list_empleados()],
        lambda lib, key: _as_dict(lib.find_empleado(key)),
    ),
    "estudiantes": (
        ["id_estudiante", "nombre_estudiante", "carrera"],
        lambda lib: [e.to_dict() for e in lib.list_estudiantes()],
        lambda lib, key: _as_dict(lib.find_estudiante(key)),
    ),
    "libros": (
        ["isbn", "titulo", "autor"],
        lambda lib: [l.to_dict() for l in lib.list_libros()],
        lambda lib, key: _as_dict(lib.find_libro(key)),
    ),
    "prestamos": (
        ["id_prestamo", "fecha_prestamo", "fecha_devolucion", "nombre_estudiante", "titulo", "nombre_empleado"],
        lambda lib: lib.list_prestamos(),
        lambda lib, key: lib.find_prestamo(key),
    ),
}


def _as_dict(entity: Any) -> Optional[dict]:
    return entity.to_dict() if entity is not None else None


def _resource(recurso: str):
    recurso = recurso.lower()
    if recurso not in _RESOURCES:
        print(f"Recurso desconocido: {recurso}. Opciones: {', '.join(_RESOURCES)}")
        raise typer.Exit(code=1)
    return recurso, _RESOURCES[recurso]


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Formato de salida: plain | json | rich (por defecto: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Ruta del archivo SQLite a usar"),
):
    """Global CLI options (output mode, database file)."""
    if output:
        set_output_mode(output)
    if db:
        database.configure(db)


@app.command("init-db")
def cli_init_db():
    """Create the tables if they do not exist yet."""
    lib = Library()
    lib.close()
    print(f"Base de datos lista en {database.DATABASE_FILE}")


@app.command("list")
def cli_list(recurso: str = typer.Argument(..., help="empleados | estudiantes | libros | prestamos")):
    """List every row of a resource."""
    recurso, (columns, list_rows, _) = _resource(recurso)
    lib = Library()
    try:
        print_rows(recurso.capitalize(), list_rows(lib), columns)
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    finally:
        lib.close()


@app.command("find")
def cli_find(recurso: str, clave: str):
    """Show a single row by its key."""
    recurso, (_, _, find_one) = _resource(recurso)
    lib = Library()
    try:
        record = find_one(lib, clave)
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    finally:
        lib.close()
    if record is None:
        print(f"No se encontró {clave} en {recurso}.")
        return
    print_record(f"{recurso.capitalize()} {clave}", record)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interfaz de escucha"),
    port: Optional[int] = typer.Option(None, "--port", help="Puerto HTTP"),
    reload: bool = typer.Option(False, "--reload", help="Recargar al cambiar el código"),
):
    """Start the API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Servidor corriendo en http://{host}:{port}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    app()
