"""
Network Inventory Module

A Python module for LAN device discovery and enrichment: ARP table, ping
sweep, reverse DNS, mDNS, TCP port scan with banner grab, HTTP/S, NetBIOS and
MSRPC fingerprinting, and a final OS/vendor inference pass.
"""

__version__ = "1.0.0"
__author__ = "Network Inventory Team"
