import pytest
from fastapi.testclient import TestClient

import api as api_module
import database
from config import settings
from errors import StorageError


@pytest.fixture
def empleado_id(client):
    response = client.post("/api/empleados", json={"nombre_empleado": "Laura"})
    return response.json()["data"]["id_empleado"]


@pytest.fixture
def prestamo_payload(client, empleado_id):
    client.post("/api/estudiantes", json={"id_estudiante": "E1", "nombre_estudiante": "Ana", "carrera": "CS"})
    client.post("/api/libros", json={"isbn": "9780132350884", "titulo": "Clean Code", "autor": "Robert C. Martin"})
    return {
        "id_estudiante": "E1",
        "isbn": "9780132350884",
        "fecha_prestamo": "2024-03-01",
        "id_empleado_responsable": empleado_id,
    }


def test_list_empty_envelope(client):
    for path in ("/api/empleados", "/api/estudiantes", "/api/libros", "/api/prestamos"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}


def test_empleado_lifecycle(client):
    response = client.post("/api/empleados", json={"nombre_empleado": "  Laura  "})
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Empleado creado exitosamente"
    id_empleado = body["data"]["id_empleado"]
    assert body["data"]["nombre_empleado"] == "Laura"

    response = client.put(f"/api/empleados/{id_empleado}", json={"nombre_empleado": "Laura G."})
    assert response.status_code == 200
    assert response.json()["data"]["nombre_empleado"] == "Laura G."

    response = client.delete(f"/api/empleados/{id_empleado}")
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Empleado eliminado exitosamente"}

    response = client.get(f"/api/empleados/{id_empleado}")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Empleado no encontrado"}


def test_create_empleado_missing_name(client):
    response = client.post("/api/empleados", json={})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "El nombre del empleado es requerido"}


def test_estudiante_example_flow(client, empleado_id):
    response = client.post(
        "/api/estudiantes", json={"id_estudiante": "E1", "nombre_estudiante": " Ana ", "carrera": "CS"}
    )
    assert response.status_code == 201
    assert response.json()["data"]["nombre_estudiante"] == "Ana"

    response = client.get("/api/estudiantes/E1")
    assert response.status_code == 200
    assert response.json()["data"] == {"id_estudiante": "E1", "nombre_estudiante": "Ana", "carrera": "CS"}

    client.post("/api/libros", json={"isbn": "111", "titulo": "Aura", "autor": "Carlos Fuentes"})
    response = client.post(
        "/api/prestamos",
        json={"id_estudiante": "E1", "isbn": "111", "fecha_prestamo": "2024-03-01", "id_empleado_responsable": empleado_id},
    )
    assert response.status_code == 201
    id_prestamo = response.json()["data"]["id_prestamo"]

    response = client.delete("/api/estudiantes/E1")
    assert response.status_code == 400
    assert response.json()["error"] == "No se puede eliminar el estudiante porque tiene préstamos asociados"
    assert client.get("/api/estudiantes/E1").status_code == 200

    assert client.delete(f"/api/prestamos/{id_prestamo}").status_code == 200
    response = client.delete("/api/estudiantes/E1")
    assert response.status_code == 200
    assert client.get("/api/estudiantes/E1").status_code == 404


def test_duplicate_natural_keys(client):
    client.post("/api/estudiantes", json={"id_estudiante": "E1", "nombre_estudiante": "Ana", "carrera": "CS"})
    response = client.post(
        "/api/estudiantes", json={"id_estudiante": "E1", "nombre_estudiante": "Pedro", "carrera": "Física"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Ya existe un estudiante con ese ID"
    assert client.get("/api/estudiantes/E1").json()["data"]["nombre_estudiante"] == "Ana"

    client.post("/api/libros", json={"isbn": "111", "titulo": "Aura", "autor": "Carlos Fuentes"})
    response = client.post("/api/libros", json={"isbn": "111", "titulo": "Otro", "autor": "Otro"})
    assert response.status_code == 400
    assert response.json()["error"] == "Ya existe un libro con ese ISBN"
    assert client.get("/api/libros/111").json()["data"]["titulo"] == "Aura"


def test_required_fields_checked_before_duplicates(client):
    client.post("/api/libros", json={"isbn": "111", "titulo": "Aura", "autor": "Carlos Fuentes"})
    response = client.post("/api/libros", json={"isbn": "111", "titulo": "  ", "autor": "X"})
    assert response.status_code == 400
    assert response.json()["error"] == "Todos los campos son requeridos: isbn, titulo, autor"


def test_libro_update_and_not_found(client):
    client.post("/api/libros", json={"isbn": "111", "titulo": "Aura", "autor": "Fuentes"})

    response = client.put("/api/libros/111", json={"titulo": " Aura (ed. 2) ", "autor": "Carlos Fuentes"})
    assert response.status_code == 200
    assert response.json()["data"] == {"isbn": "111", "titulo": "Aura (ed. 2)", "autor": "Carlos Fuentes"}

    response = client.put("/api/libros/999", json={"titulo": "X", "autor": "Y"})
    assert response.status_code == 404
    assert response.json()["error"] == "Libro no encontrado"
    assert client.get("/api/libros/999").status_code == 404


def test_put_unknown_keys_return_404(client, prestamo_payload):
    assert client.put("/api/empleados/999", json={"nombre_empleado": "X"}).status_code == 404
    assert client.put("/api/estudiantes/E9", json={"nombre_estudiante": "X", "carrera": "Y"}).status_code == 404
    response = client.put("/api/prestamos/999", json=prestamo_payload)
    assert response.status_code == 404
    assert response.json()["error"] == "Préstamo no encontrado"
    assert client.get("/api/prestamos").json()["data"] == []


def test_prestamo_lifecycle(client, prestamo_payload):
    response = client.post("/api/prestamos", json=prestamo_payload)
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["fecha_devolucion"] is None
    assert created["id_estudiante"] == "E1"

    response = client.get(f"/api/prestamos/{created['id_prestamo']}")
    detail = response.json()["data"]
    assert detail["nombre_estudiante"] == "Ana"
    assert detail["titulo"] == "Clean Code"
    assert detail["nombre_empleado"] == "Laura"

    returned = dict(prestamo_payload, fecha_devolucion="2024-03-10")
    response = client.put(f"/api/prestamos/{created['id_prestamo']}", json=returned)
    assert response.status_code == 200
    assert response.json()["message"] == "Préstamo actualizado exitosamente"
    assert response.json()["data"]["fecha_devolucion"] == "2024-03-10"

    assert len(client.get("/api/prestamos/estudiante/E1").json()["data"]) == 1
    assert len(client.get("/api/prestamos/libro/9780132350884").json()["data"]) == 1

    response = client.delete(f"/api/prestamos/{created['id_prestamo']}")
    assert response.json() == {"success": True, "message": "Préstamo eliminado exitosamente"}
    assert client.delete(f"/api/prestamos/{created['id_prestamo']}").status_code == 404


@pytest.mark.parametrize(
    "override, message",
    [
        ({"id_estudiante": "nadie", "isbn": "nope"}, "El estudiante no existe"),
        ({"isbn": "nope", "id_empleado_responsable": 999}, "El libro no existe"),
        ({"id_empleado_responsable": 999}, "El empleado no existe"),
        ({"id_estudiante": "NOPE", "id_empleado_responsable": "abc"}, "El estudiante no existe"),
        ({"id_empleado_responsable": "abc"}, "El empleado no existe"),
    ],
)
def test_prestamo_missing_reference(client, prestamo_payload, override, message):
    response = client.post("/api/prestamos", json=dict(prestamo_payload, **override))
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": message}


def test_prestamo_missing_fields(client, prestamo_payload):
    payload = dict(prestamo_payload)
    del payload["fecha_prestamo"]
    response = client.post("/api/prestamos", json=payload)
    assert response.status_code == 400
    assert "son requeridos" in response.json()["error"]


def test_delete_referenced_libro_and_empleado(client, prestamo_payload):
    client.post("/api/prestamos", json=prestamo_payload)

    response = client.delete("/api/libros/9780132350884")
    assert response.status_code == 400
    assert response.json()["error"] == "No se puede eliminar el libro porque tiene préstamos asociados"

    response = client.delete(f"/api/empleados/{prestamo_payload['id_empleado_responsable']}")
    assert response.status_code == 400
    assert response.json()["error"] == "No se puede eliminar el empleado porque tiene préstamos asociados"


def test_invalid_body_is_a_client_error(client):
    response = client.post("/api/empleados", content="no es json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_non_numeric_keys_are_not_found(client, empleado_id):
    response = client.get("/api/empleados/abc")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Empleado no encontrado"}

    assert client.delete("/api/empleados/abc").status_code == 404
    assert client.put("/api/empleados/abc", json={"nombre_empleado": "X"}).status_code == 404
    assert client.get(f"/api/empleados/{empleado_id}").status_code == 200

    response = client.get("/api/prestamos/abc")
    assert response.status_code == 404
    assert response.json()["error"] == "Préstamo no encontrado"
    assert client.delete("/api/prestamos/abc").status_code == 404
    assert client.get("/api/prestamos/estudiante").status_code == 404


def test_unknown_route(client):
    response = client.get("/api/desconocido")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Ruta no encontrada"}

    response = client.patch("/api/empleados")
    assert response.status_code == 404


def test_storage_error_is_generic_500(client, monkeypatch):
    def broken():
        raise StorageError("Error al obtener libros")

    monkeypatch.setattr(api_module.library, "list_libros", broken)
    response = client.get("/api/libros")
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Error al obtener libros"}


def test_sqlite_failure_becomes_storage_error(client):
    with database.connection() as conn:
        conn.execute("DROP TABLE libros")

    response = client.get("/api/libros")
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Error al obtener libros"}


def test_unhandled_error_hides_detail_in_production(lib, monkeypatch):
    def boom():
        raise RuntimeError("detalle interno")

    monkeypatch.setattr(api_module.library, "list_empleados", boom)
    test_client = TestClient(api_module.app, raise_server_exceptions=False)

    response = test_client.get("/api/empleados")
    assert response.status_code == 500
    assert response.json()["error"] == "Error interno del servidor"
    assert response.json()["message"] == "detalle interno"

    monkeypatch.setattr(settings, "environment", "production")
    response = test_client.get("/api/empleados")
    assert response.json()["message"] == "Algo salió mal"


def test_root_banner_without_frontend(client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "static_dir", str(tmp_path / "sin_frontend"))
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["data"]["api"] == "/api"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["db"] is True
