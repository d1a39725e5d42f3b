"""
Host Registry for the Network Inventory Module.

This module provides the HostRegistry class, the single shared inventory every
probe step writes into. It owns the merge algorithm that folds partial,
out-of-order discoveries about the same device into one Host record, and the
first-writer-wins rule applied when probes fill in host attributes.

All mutating operations take one re-entrant lock for the duration of the point
mutation only, so workers from the same or different steps can call in
concurrently while a sweep is running.
"""

import copy
import threading
from typing import Callable, Iterable, List, Optional, TypeVar

from .data_models import (
    HOST_TEXT_FIELDS,
    UNKNOWN_CLASSIFICATION,
    Host,
    HostStatus,
    NetworkInterface,
    Service,
)
from ..utils.logger import Logger, get_logger

T = TypeVar("T")

HostCallback = Callable[[Host], None]


def _is_unset(value: Optional[str]) -> bool:
    return not value or not value.strip() or value == UNKNOWN_CLASSIFICATION


class HostRegistry:
    """
    Thread-safe collection of Host records.

    Two records describe the same device when any of their IP addresses match.
    After every upsert no two hosts in the registry share an address.
    """

    def __init__(self, logger: Optional[Logger] = None):
        """
        Initialize an empty registry.

        Args:
            logger: Logger instance for subscriber failures and debug output
        """
        self.logger = logger or get_logger(__name__)
        self._hosts: List[Host] = []
        self._lock = threading.RLock()
        self._subscribers: List[HostCallback] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: HostCallback) -> None:
        """Register a callback invoked with a copy of every host after it changes."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: HostCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _notify(self, hosts: Iterable[Host]) -> None:
        # Subscribers run outside the lock and get copies taken under it
        with self._lock:
            subscribers = list(self._subscribers)
            if not subscribers:
                return
            copies = [copy.deepcopy(host) for host in hosts]
        for host in copies:
            for callback in subscribers:
                try:
                    callback(host)
                except Exception as e:
                    self.logger.warning(f"Host update subscriber failed: {e}")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_by_address(self, ip_address: str) -> Optional[Host]:
        """
        Find the host owning an address.

        Args:
            ip_address: IPv4 address string

        Returns:
            The first host with an interface holding the address, or None
        """
        with self._lock:
            return self._find_unlocked(ip_address)

    def _find_unlocked(self, ip_address: str) -> Optional[Host]:
        for host in self._hosts:
            for interface in host.network_interfaces:
                if ip_address in interface.ip_addresses:
                    return host
        return None

    def snapshot(self) -> List[Host]:
        """Deep copy of all hosts, safe to iterate while probes keep writing."""
        with self._lock:
            return copy.deepcopy(self._hosts)

    def hosts_with_ports(self, ports: Iterable[int]) -> List[Host]:
        """Snapshot of the hosts exposing a service on any of the given ports."""
        wanted = set(ports)
        with self._lock:
            return [copy.deepcopy(host) for host in self._hosts if host.has_port(wanted)]

    def online_addresses(self) -> List[str]:
        """All addresses of hosts currently marked Online, in discovery order."""
        with self._lock:
            return [
                address
                for host in self._hosts
                if host.status == HostStatus.ONLINE
                for address in host.ip_addresses()
            ]

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def upsert(self, candidate: Host) -> Host:
        """
        Insert a host or merge it into the host(s) sharing its addresses.

        Args:
            candidate: Host carrying the facts a probe just discovered

        Returns:
            The registry's record for the device
        """
        with self._lock:
            host = self._upsert_unlocked(candidate)
        self._notify([host])
        return host

    def upsert_many(self, candidates: Iterable[Host]) -> List[Host]:
        """
        Upsert a batch of candidates under one lock acquisition.

        Args:
            candidates: Hosts to merge

        Returns:
            The registry records touched, in candidate order
        """
        with self._lock:
            touched = [self._upsert_unlocked(candidate) for candidate in candidates]
        self._notify(touched)
        return touched

    def _upsert_unlocked(self, candidate: Host) -> Host:
        addresses = candidate.ip_addresses()
        matches: List[Host] = []
        for address in addresses:
            host = self._find_unlocked(address)
            if host is not None and not any(host is match for match in matches):
                matches.append(host)

        if not matches:
            host = copy.deepcopy(candidate)
            self._hosts.append(host)
            self.logger.debug(f"Registry: new host {host.display_name()}")
            return host

        target = matches[0]
        # A candidate bridging several records proves they are one device
        for duplicate in matches[1:]:
            self.logger.debug(
                f"Registry: folding {duplicate.display_name()} into {target.display_name()}"
            )
            self._merge_into(target, duplicate)
            self._hosts = [host for host in self._hosts if host is not duplicate]

        self._merge_into(target, candidate)
        return target

    def _merge_into(self, target: Host, source: Host) -> None:
        for index, interface in enumerate(source.network_interfaces):
            existing = self._matching_interface(target, interface)
            if existing is None and index == 0 and target.network_interfaces:
                primary = target.network_interfaces[0]
                if not interface.mac or not primary.mac or interface.mac == primary.mac:
                    existing = primary

            if existing is None:
                target.network_interfaces.append(copy.deepcopy(interface))
            else:
                self._merge_interface(existing, interface)

        if source.status == HostStatus.ONLINE:
            target.status = HostStatus.ONLINE
        elif target.status == HostStatus.UNKNOWN:
            target.status = source.status

        for attribute in HOST_TEXT_FIELDS:
            if _is_unset(getattr(target, attribute)) and not _is_unset(getattr(source, attribute)):
                setattr(target, attribute, getattr(source, attribute))

    @staticmethod
    def _matching_interface(host: Host, interface: NetworkInterface) -> Optional[NetworkInterface]:
        for existing in host.network_interfaces:
            if set(existing.ip_addresses) & set(interface.ip_addresses):
                return existing
        if interface.mac:
            for existing in host.network_interfaces:
                if existing.mac == interface.mac:
                    return existing
        return None

    @staticmethod
    def _merge_interface(target: NetworkInterface, source: NetworkInterface) -> None:
        for address in source.ip_addresses:
            target.add_ip(address)
        if not target.mac and source.mac:
            target.mac = source.mac
        if not target.name and source.name:
            target.name = source.name
        for service in source.services:
            target.merge_service(service)

    # ------------------------------------------------------------------
    # Point mutations
    # ------------------------------------------------------------------

    def update_field(self, ip_address: str, field: str, value: str, overwrite: bool = False) -> bool:
        """
        Set a host attribute by address.

        Unless ``overwrite`` is given the value is only written when the field
        is still empty, so the first probe to resolve a fact keeps it.

        Args:
            ip_address: Address identifying the host
            field: Attribute name, e.g. "hostname" or "manufacturer"
            value: New value
            overwrite: Replace a value that is already set

        Returns:
            True if the field was written
        """
        if field not in HOST_TEXT_FIELDS:
            raise ValueError(f"Unknown host field: {field}")
        if _is_unset(value):
            return False

        with self._lock:
            host = self._find_unlocked(ip_address)
            if host is None:
                return False
            if not overwrite and not _is_unset(getattr(host, field)):
                return False
            if getattr(host, field) == value:
                return False
            setattr(host, field, value)

        self._notify([host])
        return True

    def set_mac(self, ip_address: str, mac: str) -> bool:
        """Fill the MAC of the interface holding an address, if still empty."""
        if not mac:
            return False
        with self._lock:
            host = self._find_unlocked(ip_address)
            if host is None:
                return False
            interface = host.interface_for(ip_address)
            if interface is None or interface.mac:
                return False
            interface.mac = mac
        self._notify([host])
        return True

    def add_service(self, ip_address: str, service: Service) -> Optional[Service]:
        """
        Merge a service into the interface holding an address.

        Returns:
            The stored service, or None when no host owns the address
        """
        def _add(host: Host) -> Service:
            interface = host.interface_for(ip_address)
            return interface.merge_service(service)

        return self.modify(ip_address, _add)

    def modify(self, ip_address: str, mutator: Callable[[Host], T]) -> Optional[T]:
        """
        Apply an arbitrary mutation to the host owning an address.

        The mutator runs under the registry lock and must not block.

        Args:
            ip_address: Address identifying the host
            mutator: Callable receiving the live Host record

        Returns:
            The mutator's return value, or None when no host owns the address
        """
        with self._lock:
            host = self._find_unlocked(ip_address)
            if host is None:
                return None
            result = mutator(host)
        self._notify([host])
        return result

    def for_each_host(self, mutator: Callable[[Host], None]) -> int:
        """
        Apply a mutation to every host, taking the lock once per host.

        Returns:
            Number of hosts visited
        """
        with self._lock:
            hosts = list(self._hosts)
        for host in hosts:
            with self._lock:
                mutator(host)
        self._notify(hosts)
        return len(hosts)
