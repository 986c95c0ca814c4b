"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "judicial_user"
    password: str = "judicial_password"
    name: str = "judicial_database"
    url: str = ""


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class PortalConfig:
    """Remote judicial portal settings"""
    base_url: str = "https://consultaprocesos.ramajudicial.gov.co:448"
    site_url: str = "https://consultaprocesos.ramajudicial.gov.co"
    timeout_seconds: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "es-ES,es;q=0.9,en;q=0.8"
    max_workers: int = 4
    allow_degraded_fallback: bool = False


@dataclass
class SearchConfig:
    """Local case search settings"""
    default_page_size: int = 10
    max_page_size: int = 50


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = ""
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class MonitoringConfig:
    """Store monitoring configuration"""
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0
    enable_prometheus: bool = True


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.portal: PortalConfig = PortalConfig()
        self.search: SearchConfig = SearchConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.monitoring: MonitoringConfig = MonitoringConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_portal()
        self._parse_search()
        self._parse_logging()
        self._parse_monitoring()
        self._parse_database()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            url=cfg.get('url', self.database.url)
        )

    def _parse_portal(self) -> None:
        """Parse portal configuration"""
        cfg = self._raw_config.get('portal', {})
        self.portal = PortalConfig(
            base_url=cfg.get('base_url', self.portal.base_url).rstrip('/'),
            site_url=cfg.get('site_url', self.portal.site_url).rstrip('/'),
            timeout_seconds=float(cfg.get('timeout_seconds', 30.0)),
            user_agent=cfg.get('user_agent', DEFAULT_USER_AGENT),
            accept_language=cfg.get('accept_language', self.portal.accept_language),
            max_workers=int(cfg.get('max_workers', 4)),
            allow_degraded_fallback=bool(cfg.get('allow_degraded_fallback', False))
        )

    def _parse_search(self) -> None:
        """Parse search configuration"""
        cfg = self._raw_config.get('search', {})
        self.search = SearchConfig(
            default_page_size=int(cfg.get('default_page_size', 10)),
            max_page_size=int(cfg.get('max_page_size', 50))
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', ''),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_monitoring(self) -> None:
        """Parse store monitoring configuration"""
        cfg = self._raw_config.get('monitoring', {})
        self.monitoring = MonitoringConfig(
            slow_query_threshold_ms=float(cfg.get('slow_query_threshold_ms', 1000.0)),
            warning_threshold_ms=float(cfg.get('warning_threshold_ms', 500.0)),
            enable_prometheus=cfg.get('enable_prometheus', True)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'portal': {
                'base_url': self.portal.base_url,
                'site_url': self.portal.site_url,
                'timeout_seconds': self.portal.timeout_seconds,
                'max_workers': self.portal.max_workers,
                'allow_degraded_fallback': self.portal.allow_degraded_fallback
            },
            'search': {
                'default_page_size': self.search.default_page_size,
                'max_page_size': self.search.max_page_size
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'monitoring': {
                'slow_query_threshold_ms': self.monitoring.slow_query_threshold_ms,
                'enable_prometheus': self.monitoring.enable_prometheus
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        if self.portal.timeout_seconds <= 0:
            raise ConfigurationError("portal.timeout_seconds must be positive")
        if self.portal.max_workers < 1:
            raise ConfigurationError("portal.max_workers must be at least 1")
        if not self.portal.base_url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"portal.base_url is not an HTTP URL: {self.portal.base_url}")
        if self.search.default_page_size < 1 or self.search.max_page_size < 1:
            raise ConfigurationError("search page sizes must be at least 1")
        if self.search.default_page_size > self.search.max_page_size:
            raise ConfigurationError("search.default_page_size exceeds search.max_page_size")
        if self.logging.level.upper() not in logging._nameToLevel:
            raise ConfigurationError(f"Unknown logging level: {self.logging.level}")


def configure_logging(config: Optional[ConfigManager] = None) -> None:
    """Install root handlers according to the logging section"""
    cfg = (config or get_config()).logging
    root = logging.getLogger()
    root.setLevel(cfg.level.upper())
    formatter = logging.Formatter(cfg.format)

    if cfg.console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if cfg.file:
        log_path = Path(cfg.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
