"""
Raw protocol packet construction and parsing for the Windows service probes.

This module builds the minimal requests the NetBIOS and MSRPC steps send and
decodes the parts of the answers they need:

- NetBIOS Name Service node status (NBSTAT) query and name-table response
  (RFC 1002, section 4.2.17/4.2.18)
- SMB Negotiate Protocol request, framed with the 4-byte session header used
  both by NetBIOS session service (TCP/139) and direct SMB (TCP/445)
- DCE/RPC connection-oriented Bind to the Endpoint Mapper interface
"""

import struct
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..utils.error_handler import ProtocolError

# ----------------------------------------------------------------------
# NetBIOS name service
# ----------------------------------------------------------------------

NBSTAT_TRANSACTION_ID = 0x8001
NBSTAT_TYPE = 0x21
NB_CLASS_IN = 0x0001
NAME_RECORD_SIZE = 18
# Header (12) + full answer name (34) + type, class, TTL, rdlength (10)
DEFAULT_NAME_COUNT_OFFSET = 56

NAME_FLAG_GROUP = 0x80
NAME_FLAG_DEREGISTERED = 0x10

NETBIOS_NAME_TYPES = {
    0x00: "Workstation Service",
    0x03: "Messenger Service",
    0x06: "RAS Server Service",
    0x1B: "Domain Master Browser",
    0x1C: "Domain Controller",
    0x1D: "Master Browser",
    0x1E: "Browser Service Elections",
    0x20: "File Server Service",
    0x21: "RAS Client Service",
    0xBE: "Network Monitor Agent",
    0xBF: "Network Monitor AFA",
    0x87: "MS Exchange MTA",
    0x89: "MS Exchange IMC",
}


def encode_netbios_name(name: str, suffix: int = 0x00) -> bytes:
    """
    First-level encode a NetBIOS name (RFC 1001 section 14.1).

    ``"*"`` is padded with NUL bytes, other names with spaces.

    Returns:
        The length-prefixed 32-character label followed by the root label
    """
    pad = b"\x00" if name == "*" else b" "
    raw = name.upper().encode("ascii")[:15].ljust(15, pad) + bytes([suffix])
    encoded = bytearray()
    for byte in raw:
        encoded.append(ord("A") + (byte >> 4))
        encoded.append(ord("A") + (byte & 0x0F))
    return bytes([len(encoded)]) + bytes(encoded) + b"\x00"


def build_nbstat_request(transaction_id: int = NBSTAT_TRANSACTION_ID) -> bytes:
    """Node status request for the wildcard name ``*``."""
    header = struct.pack(">HHHHHH", transaction_id, 0x0000, 1, 0, 0, 0)
    question = encode_netbios_name("*") + struct.pack(">HH", NBSTAT_TYPE, NB_CLASS_IN)
    return header + question


@dataclass
class NetBiosName:
    """One entry of a NetBIOS name table."""
    name: str
    name_type: int
    flags: int

    @property
    def is_group(self) -> bool:
        return bool(self.flags & NAME_FLAG_GROUP)

    @property
    def type_description(self) -> str:
        return NETBIOS_NAME_TYPES.get(self.name_type, f"Type: 0x{self.name_type:02X}")

    @property
    def flags_description(self) -> str:
        labels = []
        if self.flags & NAME_FLAG_GROUP:
            labels.append("Group")
        if self.flags & NAME_FLAG_DEREGISTERED:
            labels.append("Deregistered")
        return ",".join(labels) if labels else "Unique"


def _skip_name(data: bytes, offset: int) -> int:
    """Return the offset just past an encoded (possibly compressed) name."""
    while offset < len(data):
        length = data[offset]
        if length & 0xC0 == 0xC0:
            return offset + 2
        if length == 0:
            return offset + 1
        offset += 1 + length
    raise ProtocolError("Truncated name in NetBIOS response")


def _name_count_offset(data: bytes) -> int:
    """Locate the name-count byte by walking the header and answer name."""
    if len(data) < 12:
        raise ProtocolError("NetBIOS response shorter than its header")
    qdcount, ancount = struct.unpack(">HH", data[4:8])
    if ancount < 1:
        raise ProtocolError("NetBIOS response carries no answer")

    offset = 12
    for _ in range(qdcount):
        offset = _skip_name(data, offset) + 4
    offset = _skip_name(data, offset) + 10
    return offset


def parse_nbstat_response(data: bytes) -> Tuple[List[NetBiosName], bool]:
    """
    Decode the name table of a node status response.

    Args:
        data: Raw UDP payload

    Returns:
        Tuple of (names, truncated). ``truncated`` is True when the payload
        ended before the announced number of records.

    Raises:
        ProtocolError: If the payload is not a node status response
    """
    try:
        offset = _name_count_offset(data)
    except ProtocolError:
        offset = DEFAULT_NAME_COUNT_OFFSET

    if offset >= len(data):
        raise ProtocolError("NetBIOS response ends before the name table")

    count = data[offset]
    offset += 1
    names: List[NetBiosName] = []

    for _ in range(count):
        if offset + NAME_RECORD_SIZE > len(data):
            return names, True
        raw_name = data[offset:offset + 15].decode("ascii", errors="replace").rstrip(" \x00")
        names.append(NetBiosName(name=raw_name, name_type=data[offset + 15], flags=data[offset + 16]))
        offset += NAME_RECORD_SIZE

    return names, False


def format_name_table(names: List[NetBiosName], truncated: bool = False) -> str:
    """Render a name table as a single description line."""
    if not names and not truncated:
        return "NetBIOS (UDP 137) response: Malformed or no names found."

    parts = [f"NetBIOS Name Table ({len(names)} names):"]
    for entry in names:
        parts.append(f"Name: '{entry.name}' ({entry.type_description}, {entry.flags_description})")
    text = " | ".join(parts)
    if truncated:
        text += " | Response truncated."
    return text


# ----------------------------------------------------------------------
# SMB
# ----------------------------------------------------------------------

SMB1_MAGIC = b"\xffSMB"
SMB2_MAGIC = b"\xfeSMB"
SMB_COM_NEGOTIATE = 0x72
SMB_DIALECTS = ("NT LM 0.12", "SMB 2.002", "SMB 2.???")


def build_smb_negotiate_request(dialects=SMB_DIALECTS) -> bytes:
    """
    SMB1 Negotiate Protocol request wrapped in a session header.

    The 4-byte header (type 0x00 plus 24-bit length) is the same for NetBIOS
    session service and for direct SMB over TCP/445.
    """
    smb_header = struct.pack(
        "<4sBIBHH8sHHHHH",
        SMB1_MAGIC,
        SMB_COM_NEGOTIATE,
        0,          # status
        0x18,       # flags: case-insensitive paths, canonical names
        0xC853,     # flags2: unicode, NT status, extended security, long names
        0,          # PID high
        b"\x00" * 8,
        0,          # reserved
        0,          # TID
        0xFEFF,     # PID
        0,          # UID
        0,          # MID
    )
    dialect_bytes = b"".join(b"\x02" + name.encode("ascii") + b"\x00" for name in dialects)
    body = struct.pack("<BH", 0, len(dialect_bytes)) + dialect_bytes
    message = smb_header + body
    return struct.pack(">I", len(message) & 0x00FFFFFF) + message


def has_smb_signature(data: bytes) -> bool:
    return SMB1_MAGIC in data or SMB2_MAGIC in data


def hex_preview(data: bytes, limit: int = 200) -> str:
    """Dash-separated hex of a payload, cut to ``limit`` characters."""
    return "-".join(f"{byte:02X}" for byte in data)[:limit]


# ----------------------------------------------------------------------
# DCE/RPC
# ----------------------------------------------------------------------

EPM_INTERFACE_UUID = uuid.UUID("e1af8308-5d1f-11c9-91a4-08002b14a0fa")
EPM_INTERFACE_VERSION = (3, 0)
NDR_TRANSFER_UUID = uuid.UUID("8a885d04-1ceb-11c9-9fe8-08002b104860")
NDR_TRANSFER_VERSION = 2

RPC_PTYPE_BIND = 11
RPC_PTYPE_BIND_ACK = 12
RPC_PTYPE_BIND_NAK = 13
RPC_FLAGS_FIRST_LAST = 0x03
RPC_LITTLE_ENDIAN_DREP = b"\x10\x00\x00\x00"


def build_epm_bind_request(call_id: int = 1) -> bytes:
    """Bind request for the Endpoint Mapper with the NDR transfer syntax."""
    context = struct.pack("<HBB", 0, 1, 0)
    context += EPM_INTERFACE_UUID.bytes_le + struct.pack("<HH", *EPM_INTERFACE_VERSION)
    context += NDR_TRANSFER_UUID.bytes_le + struct.pack("<I", NDR_TRANSFER_VERSION)

    body = struct.pack("<HHI", 4280, 4280, 0) + struct.pack("<B3x", 1) + context
    frag_length = 16 + len(body)
    header = struct.pack(
        "<BBBB4sHHI",
        5, 0,
        RPC_PTYPE_BIND,
        RPC_FLAGS_FIRST_LAST,
        RPC_LITTLE_ENDIAN_DREP,
        frag_length,
        0,
        call_id,
    )
    return header + body


def rpc_packet_type(data: bytes) -> Optional[int]:
    """Packet type of a DCE/RPC v5 response, or None if it is not one."""
    if len(data) < 16 or data[0] != 5:
        return None
    return data[2]
