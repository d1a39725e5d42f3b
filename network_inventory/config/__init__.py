"""
Configuration module for Network Inventory.
Provides configuration loading and validation for the pipeline and every probe step.
"""

from .config_loader import (
    ConfigLoader,
    PipelineConfig,
    ArpConfig,
    PingConfig,
    DnsConfig,
    PortScanConfig,
    HttpConfig,
    NetBiosConfig,
    MsrpcConfig,
    MdnsConfig,
)

__all__ = [
    'ConfigLoader',
    'PipelineConfig',
    'ArpConfig',
    'PingConfig',
    'DnsConfig',
    'PortScanConfig',
    'HttpConfig',
    'NetBiosConfig',
    'MsrpcConfig',
    'MdnsConfig',
]
