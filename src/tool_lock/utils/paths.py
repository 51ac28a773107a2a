from pathlib import Path

from platformdirs import user_data_dir, user_log_dir, user_runtime_dir

APP_DIR_NAME = "tool_lock"


def get_project_root() -> Path | None:
    """Returns the checkout root when running from a dev clone, else None."""
    # Both markers are required so an installed copy that happens to sit under
    # some other project's pyproject.toml doesn't write into it.
    potential_root = Path(__file__).resolve().parent.parent.parent.parent
    if (potential_root / "pyproject.toml").exists() and (potential_root / ".git").exists():
        return potential_root
    return None


def get_default_data_dir() -> Path:
    """Directory holding the lock record, schedules, stats and config.json."""
    root = get_project_root()
    if root:
        return root / "outputs"
    return Path(user_data_dir(appname=APP_DIR_NAME))


def get_default_log_dir() -> Path:
    root = get_project_root()
    if root:
        return root / "outputs"
    return Path(user_log_dir(appname=APP_DIR_NAME))


def get_default_socket_path() -> Path:
    """Unix socket the daemon listens on.

    AF_UNIX paths are limited to ~104 bytes, so prefer the short runtime dir
    over the data dir.
    """
    root = get_project_root()
    if root:
        return root / "outputs" / "tool-lock.sock"
    return Path(user_runtime_dir(appname=APP_DIR_NAME)) / "tool-lock.sock"
