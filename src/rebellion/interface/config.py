"""
Tracker configuration persistence.

Stores settings like the state file, authority role and server ports in a
JSON file next to the state.
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING, TypedDict

if TYPE_CHECKING:
    from ..state import StateService
    from ..systems.officers import StaticActorDirectory


class Config(TypedDict, total=False):
    """Tracker configuration."""
    state_path: str  # JSON document holding the rebellion state
    authority: bool  # Whether this process applies merges (the GM)
    host: str
    port: int  # WebSocket port
    api_port: int  # HTTP API port
    seed: int | None  # Dice seed, None for system randomness
    log_level: str
    actors: list[dict]  # ActorInfo dicts for officer lookups


DEFAULT_CONFIG: Config = {
    "state_path": "rebellion.json",
    "authority": True,
    "host": "localhost",
    "port": 8765,
    "api_port": 8000,
    "seed": None,
    "log_level": "INFO",
    "actors": [],
}


def get_config_path(base_dir: Path | str = ".") -> Path:
    """Get path to config file."""
    return Path(base_dir) / ".rebellion_config.json"


def load_config(base_dir: Path | str = ".") -> Config:
    """Load config from file, or return defaults if not found."""
    path = get_config_path(base_dir)

    if not path.exists():
        return _defaults()

    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
    except (json.JSONDecodeError, IOError):
        return _defaults()

    if not isinstance(saved, dict):
        return _defaults()

    # Merge with defaults to handle missing keys
    config = _defaults()
    config.update(saved)
    return config


def save_config(config: Config, base_dir: Path | str = ".") -> bool:
    """Save config to file. Returns True on success."""
    path = get_config_path(base_dir)

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except IOError:
        return False


def _defaults() -> Config:
    config = DEFAULT_CONFIG.copy()
    config["actors"] = []
    return config


def build_service(config: Config) -> "StateService":
    """
    State service for this process.

    The authority owns the state file. A client relays its updates over a
    websocket to the authority at host:port and reads the shared file.
    """
    from ..state import JsonRebellionStore, StateService
    from .websocket_server import WebSocketChannel

    store = JsonRebellionStore(config["state_path"])
    if config["authority"]:
        return StateService(store)
    channel = WebSocketChannel(f"ws://{config['host']}:{config['port']}")
    return StateService(store, is_authority=False, channel=channel, sender_id="editor")


def build_actors(config: Config) -> "StaticActorDirectory":
    from ..systems.officers import StaticActorDirectory

    return StaticActorDirectory.from_dicts(config.get("actors") or [])
