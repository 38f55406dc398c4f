"""Config dependency."""

import os
from pathlib import Path

from ..config import Config
from ..constants import CONFIGURATION_PATH, CONFIGURATION_PATH_ENV

__all__ = ["ConfigDependency", "config_dependency"]


class ConfigDependency:
    """Dependency to manage a cached volguard configuration.

    The configuration is read on first request, cached, and returned to all
    dependency callers unless `set_path` is called to change the
    configuration.

    Parameters
    ----------
    path
        Path to the volguard configuration. Defaults to the value of
        ``VOLGUARD_CONFIG_PATH`` if set, otherwise the standard path.
    """

    def __init__(self, path: Path | None = None) -> None:
        if not path:
            path = Path(os.getenv(CONFIGURATION_PATH_ENV, CONFIGURATION_PATH))
        self._path = path
        self._config: Config | None = None

    async def __call__(self) -> Config:
        return self.config

    @property
    def config(self) -> Config:
        """Load configuration if needed and return it.

        Returns
        -------
        Config
            volguard configuration.
        """
        if self._config is None:
            self._config = Config.from_file(self._path)
        return self._config

    def set_path(self, path: Path) -> None:
        """Change the configuration path and reload.

        Parameters
        ----------
        path
            New configuration path.
        """
        self._path = path
        self._config = Config.from_file(path)


config_dependency = ConfigDependency()
"""The dependency that will return the volguard configuration."""
