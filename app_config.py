import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5678
SERVER_NAME = "mcp-bubble-wrap"
SERVER_VERSION = "1.0.0"

_REPO_ROOT = Path(__file__).resolve().parent
_TRUTHY = ("1", "true", "yes", "on")


def _default_assets_dir() -> Path:
    return _REPO_ROOT / "assets"


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    base_url: str = f"http://localhost:{DEFAULT_PORT}"
    assets_dir: Path = _REPO_ROOT / "assets"
    debug: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        if env is None:
            env = os.environ
        try:
            port = int(env.get("PORT", DEFAULT_PORT))
        except ValueError:
            port = DEFAULT_PORT
        raw_assets = env.get("MCP_WIDGET_ASSETS_DIR")
        assets_dir = Path(os.path.expanduser(raw_assets)) if raw_assets else _default_assets_dir()
        return cls(
            host=env.get("HOST", DEFAULT_HOST),
            port=port,
            base_url=(env.get("BASE_URL") or f"http://localhost:{port}").rstrip("/"),
            assets_dir=assets_dir,
            debug=env.get("MCP_DEBUG", "").strip().lower() in _TRUTHY,
        )
