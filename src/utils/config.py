# Clustering configuration loaded from the environment / .env file
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.clustering.distance import METRICS
from src.clustering.errors import ConfigurationError
from src.utils.logging_setup import get_logger

logger = get_logger('config')


class ClusteringConfig(BaseModel):
    """Validated clustering settings"""
    eps: float = Field(default=0.5, gt=0, allow_inf_nan=False)
    min_pts: int = Field(default=5, ge=1)
    metric: str = 'euclidean'
    timeout: Optional[float] = Field(default=None, gt=0)
    sweep_max_workers: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "eps": 0.3,
            "min_pts": 5,
            "metric": "euclidean",
            "timeout": 60.0,
            "sweep_max_workers": 4
        }
    })


class ConfigManager:
    """
    Configuration Manager for the clustering services

    Reads DBSCAN_EPS, DBSCAN_MIN_PTS, DBSCAN_METRIC, DBSCAN_TIMEOUT and
    SWEEP_MAX_WORKERS from the environment, after loading the .env file
    when there is one.
    """

    def __init__(self, env_path: str = '.env', require_env_file: bool = False):
        """
        Args:
            env_path: Path to .env file (default: '.env')
            require_env_file: raise if the .env file is missing
        """
        self.env_path = env_path
        self.require_env_file = require_env_file
        self.config: Optional[ClusteringConfig] = None
        self._validate_env_file()
        self._load_environment()

    def _validate_env_file(self) -> None:
        """
        Raises:
            ConfigurationError: If a required .env file is missing or not readable
        """
        if not os.path.exists(self.env_path):
            if self.require_env_file:
                raise ConfigurationError(
                    f"Environment file not found: {self.env_path}")
            return

        if not os.access(self.env_path, os.R_OK):
            raise ConfigurationError(
                f"Cannot read environment file: {self.env_path}")

    def _load_environment(self) -> None:
        """
        Raises:
            ConfigurationError: If an environment variable is malformed
        """
        if os.path.exists(self.env_path):
            # override=True so .env changes are picked up even if env vars exist
            load_dotenv(self.env_path, override=True)

        metric = os.getenv('DBSCAN_METRIC', 'euclidean').lower()
        if metric not in METRICS:
            raise ConfigurationError(
                f"DBSCAN_METRIC must be one of {', '.join(sorted(METRICS))}, got: {metric}")

        values = {
            'eps': self._parse_float_env('DBSCAN_EPS', 0.5),
            'min_pts': self._parse_int_env('DBSCAN_MIN_PTS', 5),
            'metric': metric,
            'timeout': self._parse_float_env('DBSCAN_TIMEOUT', None),
            'sweep_max_workers': self._parse_int_env('SWEEP_MAX_WORKERS', None),
        }

        try:
            self.config = ClusteringConfig(**values)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid clustering configuration: {str(e)}")

        logger.info(
            f"Configuration loaded (eps={self.config.eps}, min_pts={self.config.min_pts}, metric={metric})")

    def _parse_int_env(self, var_name: str, default: Optional[int]) -> Optional[int]:
        """
        Raises:
            ConfigurationError: If variable is set but not a valid integer
        """
        value = os.getenv(var_name)
        if value is None or not value.strip():
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(
                f"{var_name} must be a valid integer, got: {value}")

    def _parse_float_env(self, var_name: str, default: Optional[float]) -> Optional[float]:
        value = os.getenv(var_name)
        if value is None or not value.strip():
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(
                f"{var_name} must be a valid number, got: {value}")

    def get_config(self) -> Dict[str, Any]:
        """
        Returns:
            Dictionary copy of the current configuration

        Raises:
            ConfigurationError: If configuration is not loaded
        """
        if self.config is None:
            raise ConfigurationError("Configuration not loaded")

        return self.config.model_dump()

    def get_dbscan_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for run_dbscan."""
        config = self.get_config()
        return {
            'eps': config['eps'],
            'min_pts': config['min_pts'],
            'metric': config['metric'],
            'deadline': config['timeout'],
        }

    def get_sweep_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for parameter_sweep and sweep_generator."""
        config = self.get_config()
        return {
            'max_workers': config['sweep_max_workers'],
            'metric': config['metric'],
        }
