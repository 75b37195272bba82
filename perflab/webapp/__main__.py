from __future__ import annotations

from ..env import get_env, get_flag
from . import create_app

DEFAULT_PORT = 5001


def bind_address() -> tuple[str, int]:
    """Host and port from `PERFLAB_HOST` / `PERFLAB_PORT` (bare `PORT` also works)."""
    host = get_env("HOST", "0.0.0.0") or "0.0.0.0"
    raw_port = (get_env("PORT", allow_bare=True) or "").strip()
    try:
        port = int(raw_port) if raw_port else DEFAULT_PORT
    except ValueError:
        port = DEFAULT_PORT
    return host, port


def main() -> None:
    host, port = bind_address()
    create_app().run(host=host, port=port, debug=get_flag("DEBUG"))


if __name__ == "__main__":
    main()
