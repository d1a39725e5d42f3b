"""
Configuration loader for Network Inventory Module.
Handles loading and validation of YAML configuration files with fallback to defaults.
"""

import yaml
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from ..utils.logger import Logger, get_logger

DEFAULT_STEPS = [
    "arp",
    "ping",
    "dns",
    "mdns",
    "portscan",
    "http",
    "netbios",
    "msrpc",
    "inference",
]

DEFAULT_PORTS = [
    21, 22, 23, 25, 53, 80, 110, 135, 137, 139, 143, 161, 389, 443, 445,
    993, 995, 1433, 3306, 3389, 5432, 5900, 8080, 8443,
]


@dataclass
class PipelineConfig:
    """Configuration for the pipeline runner."""
    steps: List[str] = field(default_factory=lambda: list(DEFAULT_STEPS))
    poll_interval: float = 1.0
    output_dir: Optional[str] = None
    export_file: str = "Hosts.json"


@dataclass
class ArpConfig:
    """Configuration for the ARP table step."""
    command_timeout: int = 10


@dataclass
class PingConfig:
    """Configuration for the ping sweep."""
    timeout: int = 1
    max_workers: int = 100


@dataclass
class DnsConfig:
    """Configuration for reverse DNS lookups."""
    max_workers: int = 20
    online_only: bool = False


@dataclass
class PortScanConfig:
    """Configuration for the TCP port scan."""
    ports: List[int] = field(default_factory=lambda: list(DEFAULT_PORTS))
    connect_timeout: float = 2.0
    banner_timeout: float = 2.0
    banner_bytes: int = 4096
    max_workers: int = 100
    target_source: str = "targets"  # targets, online


@dataclass
class HttpConfig:
    """Configuration for HTTP/S fingerprinting."""
    ports: List[int] = field(default_factory=lambda: [80, 443, 8080, 8443])
    tls_ports: List[int] = field(default_factory=lambda: [443, 8443])
    timeout: float = 3.0
    max_header_bytes: int = 16384
    max_workers: int = 20


@dataclass
class NetBiosConfig:
    """Configuration for the NetBIOS probe."""
    timeout: float = 3.0
    max_response_bytes: int = 4096
    max_workers: int = 10


@dataclass
class MsrpcConfig:
    """Configuration for the MSRPC / SMB probe."""
    timeout: float = 3.0
    max_response_bytes: int = 4096
    max_workers: int = 10


@dataclass
class MdnsConfig:
    """Configuration for the mDNS listener."""
    scan_time: float = 5.0
    resolve_timeout: float = 2.0


ConfigT = TypeVar("ConfigT")

# Config file name, top-level YAML key and dataclass per concern
CONFIG_SECTIONS = {
    "pipeline": ("pipeline_config.yml", PipelineConfig),
    "arp": ("arp_config.yml", ArpConfig),
    "ping": ("ping_config.yml", PingConfig),
    "dns": ("dns_config.yml", DnsConfig),
    "portscan": ("portscan_config.yml", PortScanConfig),
    "http": ("http_config.yml", HttpConfig),
    "netbios": ("netbios_config.yml", NetBiosConfig),
    "msrpc": ("msrpc_config.yml", MsrpcConfig),
    "mdns": ("mdns_config.yml", MdnsConfig),
}


class ConfigLoader:
    """
    Loads and validates YAML configuration files for the probe steps.
    Provides fallback to default configurations when files are missing.
    """

    def __init__(self, config_dir: Optional[str] = None, logger: Optional[Logger] = None):
        """
        Initialize ConfigLoader.

        Args:
            config_dir: Directory containing configuration files.
                       Defaults to the config directory relative to this file.
            logger: Logger instance for warnings about invalid values
        """
        if config_dir is None:
            self.config_dir = Path(__file__).parent
        else:
            self.config_dir = Path(config_dir)

        self.logger = logger or get_logger(__name__)

    def load_pipeline_config(self) -> PipelineConfig:
        config = self._load_section("pipeline")
        config.steps = self.validate_steps(config.steps)
        return config

    def load_arp_config(self) -> ArpConfig:
        return self._load_section("arp")

    def load_ping_config(self) -> PingConfig:
        return self._load_section("ping")

    def load_dns_config(self) -> DnsConfig:
        return self._load_section("dns")

    def load_portscan_config(self) -> PortScanConfig:
        config = self._load_section("portscan")
        config.ports = self._validate_ports(config.ports)
        if config.target_source not in ("targets", "online"):
            self.logger.warning(
                f"Invalid portscan target_source: {config.target_source}. "
                "Must be 'targets' or 'online'. Using default: targets"
            )
            config.target_source = "targets"
        return config

    def load_http_config(self) -> HttpConfig:
        config = self._load_section("http")
        config.ports = self._validate_ports(config.ports) or HttpConfig().ports
        config.tls_ports = self._validate_ports(config.tls_ports)
        return config

    def load_netbios_config(self) -> NetBiosConfig:
        return self._load_section("netbios")

    def load_msrpc_config(self) -> MsrpcConfig:
        return self._load_section("msrpc")

    def load_mdns_config(self) -> MdnsConfig:
        return self._load_section("mdns")

    def load_all(self) -> Dict[str, Any]:
        """Load every configuration section, keyed by section name."""
        loaders = {
            "pipeline": self.load_pipeline_config,
            "arp": self.load_arp_config,
            "ping": self.load_ping_config,
            "dns": self.load_dns_config,
            "portscan": self.load_portscan_config,
            "http": self.load_http_config,
            "netbios": self.load_netbios_config,
            "msrpc": self.load_msrpc_config,
            "mdns": self.load_mdns_config,
        }
        return {section: loader() for section, loader in loaders.items()}

    def _load_section(self, section: str) -> Any:
        """
        Load one configuration section from its YAML file.

        Args:
            section: Section name, also the top-level YAML key

        Returns:
            Config dataclass with loaded or default values
        """
        config_file, config_cls = CONFIG_SECTIONS[section]
        config_path = self.config_dir / config_file
        label = section.upper()

        if not config_path.exists():
            self.logger.debug(f"{label} config file not found at {config_path}. Using default configuration.")
            return config_cls()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing {label} config file {config_path}: {e}")
            self.logger.warning(f"Using default {label} configuration.")
            return config_cls()
        except OSError as e:
            self.logger.error(f"Unable to read {label} config file {config_path}: {e}")
            self.logger.warning(f"Using default {label} configuration.")
            return config_cls()

        if not isinstance(config_data, dict) or not isinstance(config_data.get(section), dict):
            self.logger.warning(f"Invalid {label} config structure in {config_path}. Using default configuration.")
            return config_cls()

        return self._build_config(config_cls, config_data[section], label)

    def _build_config(self, config_cls: Type[ConfigT], data: Dict[str, Any], label: str) -> ConfigT:
        """Validate each field of a section against the dataclass defaults."""
        defaults = config_cls()
        values = {}
        known = {f.name for f in fields(config_cls)}

        for key in data:
            if key not in known:
                self.logger.warning(f"Unknown {label} config key ignored: {key}")

        for f in fields(config_cls):
            default = getattr(defaults, f.name)
            if f.name not in data:
                values[f.name] = default
                continue

            value = data[f.name]
            if isinstance(default, bool):
                values[f.name] = self._validate_bool(value, f.name, default)
            elif isinstance(default, int):
                values[f.name] = self._validate_positive_int(value, f.name, default)
            elif isinstance(default, float):
                values[f.name] = self._validate_positive_float(value, f.name, default)
            elif isinstance(default, list):
                values[f.name] = value if isinstance(value, list) else default
                if not isinstance(value, list):
                    self.logger.warning(f"Invalid {f.name}: {value}. Must be a list. Using default: {default}")
            else:
                values[f.name] = value if value is None or isinstance(value, str) else str(value)

        return config_cls(**values)

    def _validate_positive_int(self, value: Any, field_name: str, default: int) -> int:
        """
        Validate that a value is a positive integer.

        Args:
            value: Value to validate
            field_name: Name of the field for error messages
            default: Default value to use if validation fails

        Returns:
            Validated integer value or default
        """
        try:
            int_value = int(value)
            if int_value <= 0:
                self.logger.warning(f"Invalid {field_name}: {value}. Must be positive. Using default: {default}")
                return default
            return int_value
        except (ValueError, TypeError):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be an integer. Using default: {default}")
            return default

    def _validate_positive_float(self, value: Any, field_name: str, default: float) -> float:
        try:
            float_value = float(value)
            if float_value <= 0:
                self.logger.warning(f"Invalid {field_name}: {value}. Must be positive. Using default: {default}")
                return default
            return float_value
        except (ValueError, TypeError):
            self.logger.warning(f"Invalid {field_name}: {value}. Must be a number. Using default: {default}")
            return default

    def _validate_bool(self, value: Any, field_name: str, default: bool) -> bool:
        if isinstance(value, bool):
            return value
        self.logger.warning(f"Invalid {field_name}: {value}. Must be true or false. Using default: {default}")
        return default

    def _validate_ports(self, ports: List[Any]) -> List[int]:
        """
        Validate a port list, dropping invalid entries and duplicates.

        An empty result is returned as-is; the port scan step reports it as a
        configuration error when it starts.
        """
        valid_ports: List[int] = []
        for port in ports:
            try:
                port_number = int(port)
            except (ValueError, TypeError):
                self.logger.warning(f"Invalid port: {port}. Skipping.")
                continue
            if not 1 <= port_number <= 65535:
                self.logger.warning(f"Port out of range: {port}. Skipping.")
                continue
            if port_number not in valid_ports:
                valid_ports.append(port_number)
        return valid_ports

    def validate_steps(self, steps: List[Any]) -> List[str]:
        valid_steps = []
        for step in steps:
            key = str(step).strip().lower()
            if key in DEFAULT_STEPS:
                valid_steps.append(key)
            else:
                self.logger.warning(f"Unknown pipeline step: {step}. Skipping.")

        if not valid_steps:
            self.logger.warning(f"No valid pipeline steps found. Using default: {DEFAULT_STEPS}")
            return list(DEFAULT_STEPS)
        return valid_steps

    def create_default_configs(self) -> None:
        """
        Create default configuration files if they don't exist.
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        for section, (config_file, config_cls) in CONFIG_SECTIONS.items():
            config_path = self.config_dir / config_file
            if config_path.exists():
                continue

            default_config = {section: asdict(config_cls())}
            try:
                with open(config_path, 'w', encoding='utf-8') as f:
                    yaml.dump(default_config, f, default_flow_style=False, indent=2)
                self.logger.info(f"Created default {section.upper()} config at {config_path}")
            except OSError as e:
                self.logger.error(f"Failed to create default {section.upper()} config: {e}")
