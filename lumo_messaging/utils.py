# lumo_messaging/utils.py
from typing import Any, Dict, Optional
from bson import ObjectId


def _plain(value: Any) -> Any:
    """ObjectIds anidados -> str, sin tocar las claves (pueden ser ids de usuario)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte el _id de primer nivel -> id (str) y todos los ObjectIds a strings.
    Los mapas anidados conservan sus claves tal cual.
    Las fechas se dejan como datetime; los schemas de Pydantic las serializan.
    Si doc es None, devuelve {}.
    """
    if doc is None:
        return {}
    d = {key: _plain(value) for key, value in doc.items()}

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    return d


def new_id() -> str:
    """Identificador de documento generado por el servidor (ObjectId en hex)."""
    return str(ObjectId())


def pair_key(user_a: str, user_b: str) -> str:
    """Clave canónica de un par de participantes, independiente del orden."""
    first, second = sorted((user_a, user_b))
    return f"{first}:{second}"

