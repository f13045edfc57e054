import json
from pathlib import Path
from typing import Any

from genesis import APP_NAME
from genesis.sessions.schema import Session, utc_now
from genesis.storage import atomic_write_text


def build_export(session: Session, app_name: str = APP_NAME) -> dict[str, Any]:
    return {
        "exportedAt": utc_now().isoformat(),
        "app": app_name,
        "session": session.to_record(),
    }


def export_json(session: Session, app_name: str = APP_NAME) -> str:
    return json.dumps(build_export(session, app_name), indent=2, ensure_ascii=False) + "\n"


def export_filename(session: Session) -> str:
    return f"genesis-session-{session.id}.json"


def write_export(session: Session, directory: str | Path, app_name: str = APP_NAME) -> Path:
    path = Path(directory) / export_filename(session)
    atomic_write_text(path, export_json(session, app_name))
    return path
