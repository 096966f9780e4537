"""Compact share payload: positional arrays, deflated, URL-safe base64.

A server node is encoded as ``[ip, comment, tag, tag_color, ignore, children]``
where empty strings and leaf children are written as the number ``0``. The
config wraps the forest as ``[footer, show_offline, forest]``.

Only the tree shape and display fields survive; ``parent_ip``, ``server_type``
and ``priority`` are rebuilt by flattening the decoded forest.
"""
import base64
import binascii
import json
import logging
import zlib
from typing import Any, List, Optional

from hierarchy import build_tree
from models import DEFAULT_TAG_COLOR, STANDALONE, Config, FormatError, Server
from utils import normalize_tag_color

logger = logging.getLogger(__name__)

EMPTY = 0
NODE_SLOTS = 6
CONFIG_SLOTS = 3
# Shared configs nest one level; anything far deeper is hostile input.
MAX_NESTING = 32


def _pack_text(value: str) -> Any:
    return value if value else EMPTY


def _unpack_text(value: Any, slot: str, default: str = "") -> str:
    # The string "0" is a real value; only the number 0 stands for "empty".
    if value is None or (value == EMPTY and not isinstance(value, (str, bool))):
        return default
    if not isinstance(value, str):
        raise FormatError(f"Compact server field '{slot}' must be a string.")
    return value


def _unpack_flag(value: Any, slot: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return value == 1
    raise FormatError(f"Compact field '{slot}' must be 1 or 0.")


def encode_server(node: Server) -> List[Any]:
    children: Any = [encode_server(child) for child in node.children] if node.children else EMPTY
    return [
        node.ip,
        _pack_text(node.comment),
        _pack_text(node.tag),
        _pack_text(node.tag_color),
        1 if node.ignore_in_list else 0,
        children,
    ]


def decode_server(raw: Any, depth: int = 0) -> Server:
    if depth > MAX_NESTING:
        raise FormatError(f"Compact server tree is nested deeper than {MAX_NESTING} levels.")
    if not isinstance(raw, list) or not (NODE_SLOTS - 1 <= len(raw) <= NODE_SLOTS):
        raise FormatError("Compact server entry must be a list of 5 or 6 values.")
    ip = raw[0]
    if not isinstance(ip, str) or not ip.strip():
        raise FormatError("Compact server entry is missing an ip.")
    tag_color = normalize_tag_color(_unpack_text(raw[3], "tag_color", DEFAULT_TAG_COLOR), DEFAULT_TAG_COLOR)
    server = Server(
        ip=ip.strip(),
        comment=_unpack_text(raw[1], "comment"),
        tag=_unpack_text(raw[2], "tag"),
        tag_color=tag_color,
        parent_ip="",
        server_type=STANDALONE,
        ignore_in_list=_unpack_flag(raw[4], "ignore_in_list"),
    )
    children = raw[5] if len(raw) == NODE_SLOTS else EMPTY
    if isinstance(children, list):
        server.children = [decode_server(child, depth + 1) for child in children]
    elif children != EMPTY or isinstance(children, (str, bool)):
        raise FormatError("Compact children slot must be 0 or a list.")
    return server


def encode_forest(forest: List[Server]) -> List[List[Any]]:
    return [encode_server(node) for node in forest]


def decode_forest(raw: Any) -> List[Server]:
    if raw == EMPTY and not isinstance(raw, (str, bool)):
        return []
    if not isinstance(raw, list):
        raise FormatError("Compact server list must be an array.")
    return [decode_server(item) for item in raw]


def _has_tree_shape(servers: List[Server]) -> bool:
    return any(server.children for server in servers)


def compress_config(config: Config) -> str:
    """Encode a config as a URL-safe share payload.

    Accepts either the canonical flat list or an already nested forest.
    """
    forest = config.servers if _has_tree_shape(config.servers) else build_tree(config.servers)
    packed = [
        _pack_text(config.footer),
        1 if config.show_offline_by_default else 0,
        encode_forest(forest),
    ]
    text = json.dumps(packed, separators=(",", ":"), ensure_ascii=False)
    deflated = zlib.compress(text.encode("utf-8"), 9)
    encoded = base64.b64encode(deflated).decode("ascii")
    return encoded.replace("+", "-").replace("/", "_").rstrip("=")


def decode_config_payload(payload: str) -> Config:
    """Reverse ``compress_config``; raises FormatError on any malformed stage.

    The returned config holds the decoded forest: servers carry ``children``
    and placeholder ``parent_ip``/``server_type`` until flattened.
    """
    if not isinstance(payload, str):
        raise FormatError("Compressed payload must be text.")
    text = "".join(payload.split())
    if not text:
        raise FormatError("Compressed payload is empty.")
    text = text.replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        deflated = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError("Payload is not valid base64.") from exc
    try:
        raw_json = zlib.decompress(deflated).decode("utf-8")
    except (zlib.error, UnicodeDecodeError, MemoryError) as exc:
        raise FormatError("Payload is not a compressed config.") from exc
    try:
        packed = json.loads(raw_json)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise FormatError("Compressed config is not valid JSON.") from exc
    if not isinstance(packed, list) or len(packed) != CONFIG_SLOTS:
        raise FormatError("Compressed config must be a list of 3 values.")
    footer = _unpack_text(packed[0], "footer")
    show_offline = _unpack_flag(packed[1], "show_offline_by_default")
    try:
        servers = decode_forest(packed[2])
    except (RecursionError, MemoryError) as exc:
        raise FormatError("Compressed server tree is too large to decode.") from exc
    return Config(footer=footer, show_offline_by_default=show_offline, servers=servers)


def decompress_config(payload: str) -> Optional[Config]:
    """Fail-closed variant of ``decode_config_payload``: None on any error."""
    try:
        return decode_config_payload(payload)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Payload rejected: %s", exc)
        return None
