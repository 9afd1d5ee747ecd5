import os
from pathlib import Path

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def load_project_env(override: bool = False, env_file: Path | None = None) -> None:
    """Load KEY=VALUE pairs from the project .env into os.environ.

    Existing variables win unless ``override`` is set. A leading ``export``
    is accepted so the file can also be sourced from a shell.
    """
    path = env_file or ENV_FILE
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8-sig").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        if override or key not in os.environ:
            os.environ[key] = _unquote(value.strip())
