"""Configuration loading."""

import tomllib
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Optional

import tomli_w

CONFIG_PATH = Path.home() / ".tabkeeper.toml"

STARTUP_BEHAVIORS = ("first", "last-focused", "new")
NEW_TAB_POSITIONS = ("end", "beginning", "right")


@dataclass(frozen=True)
class Config:
    """Application configuration."""
    # Session settings
    session_db_path: str
    session_save_debounce_ms: int
    session_autosave_interval_ms: int
    session_startup_behavior: str
    session_closed_history_capacity: int
    # Tab settings
    tabs_new_tab_position: str
    tabs_smart_title_max_length: int
    # Watch settings
    watch_enabled: bool
    watch_debounce_ms: int
    # Logging settings
    logging_level: str


DEFAULT_CONFIG = Config(
    session_db_path=str(Path.home() / ".tabkeeper" / "session.db"),
    session_save_debounce_ms=500,
    session_autosave_interval_ms=30000,
    session_startup_behavior="first",
    session_closed_history_capacity=12,
    tabs_new_tab_position="end",
    tabs_smart_title_max_length=25,
    watch_enabled=True,
    watch_debounce_ms=300,
    logging_level="INFO",
)


def get_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from ~/.tabkeeper.toml if present, else use defaults.

    Args:
        config_path: Override for the config file location.

    Returns:
        The loaded configuration.
    """
    config_path = config_path or CONFIG_PATH

    if not config_path.exists():
        return DEFAULT_CONFIG

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        session = data.get("session", {})
        tabs = data.get("tabs", {})
        watch = data.get("watch", {})

        startup = session.get("startup_behavior", DEFAULT_CONFIG.session_startup_behavior)
        if startup not in STARTUP_BEHAVIORS:
            startup = DEFAULT_CONFIG.session_startup_behavior

        position = tabs.get("new_tab_position", DEFAULT_CONFIG.tabs_new_tab_position)
        if position not in NEW_TAB_POSITIONS:
            position = DEFAULT_CONFIG.tabs_new_tab_position

        return Config(
            session_db_path=str(Path(session.get("db_path", DEFAULT_CONFIG.session_db_path)).expanduser()),
            session_save_debounce_ms=session.get("save_debounce_ms", DEFAULT_CONFIG.session_save_debounce_ms),
            session_autosave_interval_ms=session.get("autosave_interval_ms", DEFAULT_CONFIG.session_autosave_interval_ms),
            session_startup_behavior=startup,
            session_closed_history_capacity=max(1, session.get("closed_history_capacity", DEFAULT_CONFIG.session_closed_history_capacity)),
            tabs_new_tab_position=position,
            tabs_smart_title_max_length=tabs.get("smart_title_max_length", DEFAULT_CONFIG.tabs_smart_title_max_length),
            watch_enabled=watch.get("enabled", DEFAULT_CONFIG.watch_enabled),
            watch_debounce_ms=watch.get("debounce_ms", DEFAULT_CONFIG.watch_debounce_ms),
            logging_level=data.get("logging", {}).get("level", DEFAULT_CONFIG.logging_level),
        )
    except Exception:
        # If loading fails, return defaults
        return DEFAULT_CONFIG


def with_overrides(config: Config, **overrides) -> Config:
    """Return a copy of ``config`` with the given fields replaced."""
    return replace(config, **overrides)


def save_config(config: Config, config_path: Optional[Path] = None) -> None:
    """
    Save configuration to ~/.tabkeeper.toml.

    Args:
        config: The configuration to save.
        config_path: Override for the config file location.
    """
    config_path = config_path or CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    # Convert config to dict for TOML serialization
    config_dict = {
        "session": {
            "db_path": config.session_db_path,
            "save_debounce_ms": config.session_save_debounce_ms,
            "autosave_interval_ms": config.session_autosave_interval_ms,
            "startup_behavior": config.session_startup_behavior,
            "closed_history_capacity": config.session_closed_history_capacity,
        },
        "tabs": {
            "new_tab_position": config.tabs_new_tab_position,
            "smart_title_max_length": config.tabs_smart_title_max_length,
        },
        "watch": {
            "enabled": config.watch_enabled,
            "debounce_ms": config.watch_debounce_ms,
        },
        "logging": {
            "level": config.logging_level,
        },
    }

    with open(config_path, "wb") as f:
        tomli_w.dump(config_dict, f)


def config_as_dict(config: Config) -> dict:
    """Flat view of the configuration, used by ``config show``."""
    return asdict(config)
