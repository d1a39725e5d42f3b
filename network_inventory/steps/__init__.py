"""
Probe steps run in sequence by the pipeline.
"""

from .base_step import BaseStep, TargetSource
from .arp_table_step import ArpTableStep
from .ping_sweep_step import PingSweepStep
from .reverse_dns_step import ReverseDnsStep
from .mdns_step import MdnsStep
from .port_scan_step import PortScanStep
from .http_fingerprint_step import HttpFingerprintStep
from .netbios_step import NetBiosStep
from .msrpc_step import MsrpcStep
from .inference_step import InferenceStep

__all__ = [
    'BaseStep',
    'TargetSource',
    'ArpTableStep',
    'PingSweepStep',
    'ReverseDnsStep',
    'MdnsStep',
    'PortScanStep',
    'HttpFingerprintStep',
    'NetBiosStep',
    'MsrpcStep',
    'InferenceStep',
]
