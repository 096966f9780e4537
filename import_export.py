import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import parse_qs, quote, urlsplit

from codec import compress_config, decode_config_payload, decompress_config
from hierarchy import build_tree, flatten_tree
from models import Config, FormatError, Server, ValidationError

try:
    from openpyxl import Workbook
except ImportError:  # pragma: no cover - optional dependency
    Workbook = None
from utils import (
    duplicate_values,
    normalize_ip,
    normalize_tag_color,
    optional_text,
    parse_flag,
    parse_priority,
)

logger = logging.getLogger(__name__)

DEFAULT_QUERY_PARAM = "data"
DEFAULT_COMMAND_PREFIX = "/mcs import"

XLSX_HEADERS = [
    "Priority",
    "IP",
    "Type",
    "Parent",
    "Tag",
    "TagColor",
    "Comment",
    "IgnoreInList",
]


def normalize_import(data: Any) -> Config:
    """Turn parsed JSON (flat or nested, bare list or config dict) into a Config.

    Nested ``children`` are flattened with ``parent_ip`` stamped from the
    enclosing node where an entry does not name its own parent. The whole
    batch is rejected when any entry lacks an ip or an ip repeats. The result
    is sorted by ``priority`` (missing counts as 0); equal priorities keep
    their input order.
    """
    footer = ""
    show_offline = False
    if isinstance(data, dict):
        items = data.get("servers", [])
        footer = optional_text(data.get("footer"))
        show_offline = parse_flag(data.get("show_offline_by_default"))
    elif isinstance(data, list):
        items = data
    else:
        raise FormatError("Import must be a server list or a config object.")
    if not isinstance(items, list):
        raise FormatError("'servers' must be a list.")

    raw_entries: List[Dict[str, Any]] = []

    def collect(nodes: Iterable[Any], parent_ip: str, path: str) -> None:
        for index, node in enumerate(nodes):
            where = f"{path}{index + 1}"
            if not isinstance(node, dict):
                raise FormatError(f"Server entry {where} is not an object.")
            entry = dict(node)
            children = entry.pop("children", None)
            if parent_ip and not normalize_ip(entry.get("parent_ip")):
                entry["parent_ip"] = parent_ip
            entry["_where"] = where
            raw_entries.append(entry)
            if children in (None, 0, False):
                continue
            if not isinstance(children, list):
                raise FormatError(f"'children' of server entry {where} must be a list.")
            collect(children, normalize_ip(entry.get("ip")), f"{where}.")

    try:
        collect(items, "", "#")
    except RecursionError as exc:
        raise FormatError("Server entries are nested too deeply.") from exc

    missing = [entry["_where"] for entry in raw_entries if not normalize_ip(entry.get("ip"))]
    if missing:
        raise ValidationError(f"Server entry {missing[0]} is missing an ip.")
    duplicates = duplicate_values(normalize_ip(entry.get("ip")) for entry in raw_entries)
    if duplicates:
        raise ValidationError(f"Duplicate ip in import: {', '.join(duplicates)}")

    servers = [_server_from_json(entry) for entry in raw_entries]
    servers.sort(key=lambda server: server.priority)
    logger.debug("Normalized import of %d servers", len(servers))
    return Config(footer=footer, show_offline_by_default=show_offline, servers=servers)


def _server_from_json(item: Dict[str, Any]) -> Server:
    color = item.get("tag_color")
    if color is None:
        color = item.get("tag_color_with_hash")
    return Server(
        ip=normalize_ip(item.get("ip")),
        comment=optional_text(item.get("comment")),
        tag=optional_text(item.get("tag")),
        tag_color=normalize_tag_color(color),
        parent_ip=normalize_ip(item.get("parent_ip")),
        ignore_in_list=parse_flag(item.get("ignore_in_list")),
        priority=parse_priority(item.get("priority")),
    )


def config_from_forest(config: Config) -> Config:
    """Rebuild flat linkage for a config whose servers are a decoded forest."""
    return Config(
        footer=config.footer,
        show_offline_by_default=config.show_offline_by_default,
        servers=flatten_tree(config.servers),
    )


def export_config(config: Config) -> Dict[str, Any]:
    return {
        "footer": config.footer,
        "show_offline_by_default": config.show_offline_by_default,
        "servers": [node.to_dict(include_children=True) for node in build_tree(config.servers)],
    }


def export_json_text(config: Config) -> str:
    return json.dumps(export_config(config), indent=2, ensure_ascii=False)


def looks_like_config(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    return isinstance(data.get("servers"), list) or "footer" in data


def extract_payload(
    text: str,
    prefixes: Sequence[str] = (DEFAULT_COMMAND_PREFIX,),
    query_param: str = DEFAULT_QUERY_PARAM,
) -> Optional[str]:
    """Pull the compact payload out of a share URL or a chat command.

    Returns None when the text is neither; bare payloads are left to the caller.
    """
    value = text.strip()
    for prefix in prefixes:
        if prefix and value.startswith(prefix):
            return value[len(prefix):].strip()
    if "://" in value or value.startswith("?"):
        query = urlsplit(value).query if "://" in value else value[1:]
        values = parse_qs(query).get(query_param)
        if values:
            return values[0]
    return None


def resolve_import_text(
    text: str,
    prefixes: Sequence[str] = (DEFAULT_COMMAND_PREFIX,),
    query_param: str = DEFAULT_QUERY_PARAM,
) -> Config:
    """Interpret pasted text as a config; the first matching form wins.

    Order: share URL, chat command or bare compressed payload, then raw JSON
    (flat or nested).
    """
    if not isinstance(text, str) or not text.strip():
        raise FormatError("Nothing to import.")
    extracted = extract_payload(text, prefixes, query_param)
    if extracted is not None:
        return config_from_forest(decode_config_payload(extracted))
    decoded = decompress_config(text)
    if decoded is not None:
        return config_from_forest(decoded)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FormatError(f"Not a share link, payload or JSON document ({exc.msg}).") from exc
    except RecursionError as exc:
        raise FormatError("JSON document is nested too deeply.") from exc
    return normalize_import(data)


def config_from_clipboard(text: str) -> Optional[Config]:
    """Clipboard JSON shaped like a config, or None. Used on first load only."""
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None
    if not looks_like_config(data):
        return None
    return normalize_import(data)


def build_share_url(config: Config, base_url: str = "", query_param: str = DEFAULT_QUERY_PARAM) -> str:
    payload = quote(compress_config(config), safe="-_")
    base = base_url.split("?", 1)[0]
    return f"{base}?{query_param}={payload}"


def build_chat_command(config: Config, prefix: str = DEFAULT_COMMAND_PREFIX) -> str:
    return f"{prefix} {compress_config(config)}"


def save_json(file_path: str, config: Config) -> None:
    with open(file_path, "w", encoding="utf-8") as fh:
        fh.write(export_json_text(config))


def load_json(file_path: str) -> Config:
    with open(file_path, "r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise FormatError(f"{file_path} is not valid JSON: {exc.msg}") from exc
        except RecursionError as exc:
            raise FormatError(f"{file_path} is nested too deeply.") from exc
    return normalize_import(data)


def export_xlsx(file_path: str, config: Config) -> None:
    if Workbook is None:
        raise RuntimeError("openpyxl is required for XLSX export. Install it with: pip install openpyxl")
    book = Workbook(write_only=True)
    sheet = book.create_sheet("Servers")
    sheet.append(XLSX_HEADERS)
    for server in config.servers:
        sheet.append([
            server.priority,
            server.ip,
            server.server_type,
            server.parent_ip,
            server.tag,
            server.tag_color_with_hash,
            server.comment,
            "yes" if server.ignore_in_list else "no",
        ])
    settings_sheet = book.create_sheet("Settings")
    settings_sheet.append(["Footer", config.footer])
    settings_sheet.append(["ShowOfflineByDefault", "yes" if config.show_offline_by_default else "no"])
    book.save(file_path)
