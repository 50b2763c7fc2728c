import pytest
from fastapi.testclient import TestClient

from library import Library


@pytest.fixture
def lib(tmp_path):
    # A fresh database file per test; the module-level pool is pointed at it
    db_file = str(tmp_path / "biblioteca_test.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def client(lib):
    from api import app

    return TestClient(app)


@pytest.fixture
def seeded(lib):
    """One employee, one student and one book ready to be lent."""
    empleado = lib.add_empleado("Laura Gómez")
    estudiante = lib.add_estudiante("E1", "Ana Pérez", "Ingeniería")
    libro = lib.add_libro("9780132350884", "Clean Code", "Robert C. Martin")
    return {"empleado": empleado, "estudiante": estudiante, "libro": libro}
