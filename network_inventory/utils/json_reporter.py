"""
JSON inventory export for the Network Inventory Module.

This module writes the registry's hosts to the persisted inventory document
(``Hosts.json``), keeps a timestamped copy of every run with collision-safe
naming, reads a saved inventory back, and renders hosts as an indented text
tree for the end-of-run console summary.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..core.data_models import Host, NetworkInterface, Service, host_from_dict, hosts_to_document
from .error_handler import ErrorContext, ErrorSeverity, ErrorType, ValidationError
from .logger import get_logger
from .network_utils import ip_sort_key

DEFAULT_EXPORT_FILE = "Hosts.json"


class JSONReporter:
    """
    Handles export of the host inventory to JSON files.

    This class is responsible for:
    - Writing the indented inventory document under its fixed name
    - Keeping a timestamped copy with collision handling
    - Loading a previously written inventory
    """

    def __init__(self, output_directory: Union[str, Path] = "results", export_file: str = DEFAULT_EXPORT_FILE):
        """
        Initialize the JSON reporter.

        Args:
            output_directory: Directory where inventory files will be saved
            export_file: Name of the inventory document
        """
        self.output_directory = Path(output_directory)
        self.export_file = export_file
        self.logger = get_logger(__name__)

    def export_hosts(self, hosts: Sequence[Host], timestamp: Optional[datetime] = None) -> Path:
        """
        Write the inventory document and its timestamped copy.

        Hosts are written in address order.

        Args:
            hosts: Hosts to export
            timestamp: Run timestamp used for the copy's name

        Returns:
            Path: Location of the inventory document

        Raises:
            OSError: If a file cannot be written
        """
        self.output_directory.mkdir(parents=True, exist_ok=True)
        ordered = sorted(hosts, key=lambda host: ip_sort_key(host.primary_address))
        document = hosts_to_document(ordered)

        export_path = self.output_directory / self.export_file
        self._write(export_path, document)

        copy_path = self._handle_file_collision(
            self.output_directory / self._generate_filename(timestamp or datetime.now())
        )
        self._write(copy_path, document)

        self.logger.info(f"Inventory of {len(ordered)} hosts written to {export_path} (copy: {copy_path.name})")
        return export_path

    def load_inventory(self, path: Optional[Union[str, Path]] = None) -> List[Host]:
        """
        Read an inventory document back into Host records.

        Args:
            path: Document to read, the export file when omitted

        Returns:
            List of hosts in document order

        Raises:
            ValidationError: If the document is not a list of host objects
            OSError: If the file cannot be read
        """
        path = Path(path) if path else self.output_directory / self.export_file
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Inventory {path} is not valid JSON: {e}",
                ErrorContext(ErrorType.VALIDATION_ERROR, ErrorSeverity.HIGH, "load_inventory", "JSONReporter"),
            ) from e

        if not isinstance(document, list) or not all(isinstance(item, dict) for item in document):
            raise ValidationError(f"Inventory {path} must be a list of host objects")
        return [host_from_dict(item) for item in document]

    def _write(self, filepath: Path, document: list) -> None:
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
        except OSError as e:
            self.logger.error(f"Failed to write inventory to {filepath}: {e}")
            raise

    def _generate_filename(self, timestamp: datetime) -> str:
        # Format: Hosts_YYYYMMDD_HHMMSS.json
        stem = Path(self.export_file).stem
        return f"{stem}_{timestamp.strftime('%Y%m%d_%H%M%S')}.json"

    def _handle_file_collision(self, filepath: Path) -> Path:
        """
        Handle filename collisions by adding incremental suffix.

        Args:
            filepath: Original file path

        Returns:
            Path: Unique file path
        """
        if not filepath.exists():
            return filepath

        base_name = filepath.stem
        extension = filepath.suffix
        counter = 1

        while True:
            new_filepath = filepath.parent / f"{base_name}_{counter:03d}{extension}"
            if not new_filepath.exists():
                self.logger.debug(f"File collision detected, using filename: {new_filepath.name}")
                return new_filepath

            counter += 1
            if counter > 999:
                raise OSError(f"Too many file collisions for {filepath}")


# ----------------------------------------------------------------------
# Text tree
# ----------------------------------------------------------------------

INDENT = "  "


def _service_lines(service: Service, depth: int) -> List[str]:
    pad = INDENT * depth
    lines = [f"{pad}{service.port}/{service.protocol} {service.service_name}"]
    if service.description:
        lines.append(f"{pad}{INDENT}{service.description}")
    return lines


def _interface_lines(interface: NetworkInterface, depth: int) -> List[str]:
    pad = INDENT * depth
    label = ", ".join(interface.ip_addresses) or "(no address)"
    if interface.mac:
        label += f" [{interface.mac}]"
    if interface.name:
        label = f"{interface.name}: {label}"

    lines = [f"{pad}Interface {label}"]
    for service in sorted(interface.services, key=lambda s: (s.port, s.protocol)):
        lines.extend(_service_lines(service, depth + 1))
    return lines


def _host_lines(host: Host) -> List[str]:
    lines = [f"{host.display_name()} [{host.status.value}]"]
    details = [
        ("Domain", host.domain),
        ("Device", f"{host.device_type} / {host.device_sub_type}"),
        ("Manufacturer", host.manufacturer),
        ("Model", host.model),
        ("OS", " ".join(part for part in (host.operating_system, host.operating_system_version) if part)),
    ]
    for label, value in details:
        if value:
            lines.append(f"{INDENT}{label}: {value}")
    for interface in host.network_interfaces:
        lines.extend(_interface_lines(interface, 1))
    return lines


def render_host_tree(hosts: Sequence[Host]) -> str:
    """
    Render hosts as an indented text tree.

    Host → NetworkInterface → Service, one node per line.

    Args:
        hosts: Hosts to render

    Returns:
        Multi-line text, empty when there are no hosts
    """
    lines: List[str] = []
    for host in sorted(hosts, key=lambda h: ip_sort_key(h.primary_address)):
        lines.extend(_host_lines(host))
    return "\n".join(lines)
