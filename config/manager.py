from pathlib import Path
from typing import Dict, Any, Optional
from config.types import EngineSettings
import logging
import os


class EnvironmentManager:
    """
    Settings manager for the workflow engine. Each setting has a default and
    can be overridden by its upper-case environment variable or a .env file.
    """

    _instance = None

    # List of all settings that are paths
    PATH_SETTINGS = [
        "workflow_definitions_path",
        "workflow_metrics_log_path",
    ]

    # Default settings with their types
    DEFAULT_SETTINGS = {
        # Scheduling
        "workflow_default_concurrency_limit": (1, int),
        "workflow_default_mode": ("real", str),
        "workflow_fail_on_step_failure": (True, bool),
        # Step execution
        "workflow_step_timeout_seconds": (30.0, float),
        "workflow_step_duration_warning_ms": (10000, int),
        # Registration
        "workflow_allow_overwrite": (True, bool),
        "workflow_definitions_path": (None, str),
        # Metrics and comparison
        "workflow_metrics_log_path": (None, str),
        "workflow_trend_window": (5, int),
    }

    # Create mapping dynamically - each setting can be set via its uppercase env var
    ENV_MAPPING = {setting.upper(): setting for setting in DEFAULT_SETTINGS.keys()}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize environment with default values"""
        self.env_variables: Dict[str, str] = {}
        self.settings: Dict[str, Any] = {}
        self.logger = logging.getLogger(__name__)

        # Initialize settings with default values
        for key, (default_value, _) in self.DEFAULT_SETTINGS.items():
            self.settings[key] = default_value

        self._load_from_env_file()
        self._resolve_paths()

    def _resolve_paths(self):
        """Resolve relative path settings against the current directory"""
        for key in self.PATH_SETTINGS:
            value = self.settings.get(key)
            if value:
                p = Path(value)
                if not p.is_absolute():
                    p = Path.cwd() / p
                self.settings[key] = str(p.resolve())

    def _get_git_root(self) -> Optional[Path]:
        """Try to determine the git root directory

        Returns:
            Path to the git root directory or None if not found
        """
        current_dir = Path.cwd()

        dir_to_check = current_dir
        for _ in range(10):  # Limit the search depth
            git_dir = dir_to_check / ".git"
            if git_dir.exists() and git_dir.is_dir():
                return dir_to_check

            parent_dir = dir_to_check.parent
            if parent_dir == dir_to_check:  # Reached the root
                break
            dir_to_check = parent_dir

        return None

    def _convert_value(self, value: str, target_type: type) -> Any:
        """Convert string value to target type"""
        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")
        if target_type == str and value.lower() in ("", "none", "null"):
            return None
        return target_type(value)

    def _apply_variable(self, key: str, value: str):
        """Store a raw variable and update the setting it maps to"""
        self.env_variables[key] = value

        if key in self.ENV_MAPPING:
            setting_name = self.ENV_MAPPING[key]
            _, target_type = self.DEFAULT_SETTINGS[setting_name]
            try:
                self.settings[setting_name] = self._convert_value(value, target_type)
            except ValueError:
                self.logger.warning(
                    f"Ignoring invalid value for {key}: {value!r} (expected {target_type.__name__})"
                )

    def _load_from_env_file(self):
        """Find and load variables from a .env file"""
        env_file_paths = [Path.cwd() / ".env"]

        # Try additional common locations - safely handle home directory
        try:
            env_file_paths.append(Path.home() / ".env")
        except (RuntimeError, OSError):
            # Skip home directory if it can't be determined
            pass

        git_root = self._get_git_root()
        if git_root:
            env_file_paths.append(git_root / ".env")

        # Load from the first .env file found
        for env_path in env_file_paths:
            if env_path.exists() and env_path.is_file():
                self.logger.info(f"Loading environment from: {env_path}")
                self._parse_env_file(env_path)
                return

        self.logger.debug(
            "No .env file found. Tried: " + ", ".join(str(p) for p in env_file_paths)
        )

    def _parse_env_file(self, env_file_path: Path):
        """Parse a .env file and load variables into environment"""
        try:
            with open(env_file_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        key = key.strip()
                        value = value.strip()

                        # Remove quotes if present
                        if (value.startswith('"') and value.endswith('"')) or (
                            value.startswith("'") and value.endswith("'")
                        ):
                            value = value[1:-1]

                        self._apply_variable(key, value)

        except OSError as e:
            self.logger.error(f"Error parsing .env file {env_file_path}: {e}")

    def load(self):
        """Load all environment information"""
        self._load_from_env_file()

        # Load variables from OS environment
        for key, value in os.environ.items():
            self._apply_variable(key, value)

        self._resolve_paths()
        return self

    def get_parameter_dict(self) -> Dict[str, Any]:
        """Return all settings as a dictionary"""
        return dict(self.settings)

    def get_setting(self, name: str, default: Any = None) -> Any:
        """Get a setting value by name"""
        value = self.settings.get(name)
        return default if value is None else value

    def set_setting(self, name: str, value: Any) -> None:
        """Set a setting value by name

        Raises:
            KeyError: If the setting is unknown
        """
        if name not in self.DEFAULT_SETTINGS:
            raise KeyError(f"Unknown setting: {name}")
        self.settings[name] = value

    def reset(self):
        """Restore every setting to its default value"""
        for key, (default_value, _) in self.DEFAULT_SETTINGS.items():
            self.settings[key] = default_value
        return self

    def get_engine_settings(self) -> EngineSettings:
        """Validate the current workflow settings into an EngineSettings model"""
        prefix = "workflow_"
        return EngineSettings(
            **{
                key[len(prefix):]: value
                for key, value in self.settings.items()
                if key.startswith(prefix)
            }
        )


# Create a global instance
env_manager = EnvironmentManager()
