"""
Core functionality for network inventory.
"""

from .data_models import Host, HostStatus, NetworkInterface, Service
from .host_registry import HostRegistry
from .device_classifier import DeviceClassifier, ClassificationRule
from .network_detector import NetworkDetector, NetworkInfo

__all__ = [
    'Host',
    'HostStatus',
    'NetworkInterface',
    'Service',
    'HostRegistry',
    'DeviceClassifier',
    'ClassificationRule',
    'NetworkDetector',
    'NetworkInfo',
]
