import json
import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from hierarchy import build_tree, children_of, flatten_tree, normalize_servers, tree_depth, would_create_cycle
from models import CHILD, DEFAULT_TAG_COLOR, PARENT, STANDALONE, Config, Server, ValidationError
from utils import duplicate_values, normalize_ip, normalize_tag_color, optional_text, parse_flag

logger = logging.getLogger(__name__)

APP_NAME = "MCSEditor"
ENV_CONFIG_DIR = "MCS_EDITOR_CONFIG_DIR"
CONFIG_FILENAME = "mcs_editor_config.json"


@dataclass
class EditorSettings:
    share_base_url: str = ""
    query_param: str = "data"
    command_prefix: str = "/mcs import"
    default_tag_color: str = DEFAULT_TAG_COLOR


def app_data_dir(app_name: str = APP_NAME) -> str:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    else:
        base = os.getenv("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    if not base:
        base = os.path.expanduser("~")
    return os.path.join(base, app_name)


def settings_path() -> str:
    override = os.getenv(ENV_CONFIG_DIR)
    if override:
        return os.path.join(override, CONFIG_FILENAME)
    return os.path.join(app_data_dir(), CONFIG_FILENAME)


def load_settings(path: Optional[str] = None) -> EditorSettings:
    settings = EditorSettings()
    path = path or settings_path()
    if not os.path.exists(path):
        return settings
    try:
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable settings file %s", path)
        return settings
    if not isinstance(payload, dict):
        return settings
    for key in ("share_base_url", "query_param", "command_prefix"):
        value = payload.get(key)
        if isinstance(value, str) and (value.strip() or key == "share_base_url"):
            setattr(settings, key, value.strip())
    color = payload.get("default_tag_color")
    if isinstance(color, str):
        settings.default_tag_color = normalize_tag_color(color, settings.default_tag_color)
    return settings


def save_settings(settings: EditorSettings, path: Optional[str] = None) -> None:
    path = path or settings_path()
    payload = {
        "share_base_url": settings.share_base_url,
        "query_param": settings.query_param,
        "command_prefix": settings.command_prefix,
        "default_tag_color": settings.default_tag_color,
    }
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
    except OSError as exc:
        logger.warning("Could not save settings to %s: %s", path, exc)


TreeListener = Callable[[List[Server]], None]
Mutation = Callable[[List[Server]], Optional[List[Server]]]


class ConfigStore:
    """Owner of the canonical flat server list and its derived tree.

    All writes go through ``apply``: the mutation runs on a copy, the result
    is normalized (priorities, parent links, types) and swapped in as a single
    assignment while tree sync is suspended. A mutation that raises leaves the
    store untouched.
    """

    def __init__(self, config: Optional[Config] = None, settings: Optional[EditorSettings] = None) -> None:
        self.settings = settings or EditorSettings()
        self.footer = ""
        self.show_offline_by_default = False
        self._servers: List[Server] = []
        self._listeners: List[TreeListener] = []
        self._tree_sync_suspended = False
        if config is not None:
            self.replace(config)

    @property
    def servers(self) -> List[Server]:
        return [server.copy() for server in self._servers]

    @property
    def tree(self) -> List[Server]:
        return build_tree(self._servers)

    @property
    def tree_sync_suspended(self) -> bool:
        return self._tree_sync_suspended

    def subscribe(self, listener: TreeListener) -> None:
        self._listeners.append(listener)

    def find(self, ip: str) -> Optional[Server]:
        for server in self._servers:
            if server.ip == ip:
                return server.copy()
        return None

    def snapshot(self) -> Config:
        return Config(
            footer=self.footer,
            show_offline_by_default=self.show_offline_by_default,
            servers=self.servers,
        )

    def apply(self, mutation: Mutation) -> List[Server]:
        working = self.servers
        result = mutation(working)
        if result is not None:
            working = result
        normalized = normalize_servers(working)
        self._suspend_tree_sync()
        try:
            self._servers = normalized
        finally:
            self._resume_tree_sync()
        return self.servers

    def _suspend_tree_sync(self) -> None:
        self._tree_sync_suspended = True

    def _resume_tree_sync(self) -> None:
        self._tree_sync_suspended = False
        self._sync_tree()

    def _sync_tree(self) -> None:
        if self._tree_sync_suspended:
            return
        for listener in list(self._listeners):
            listener(build_tree(self._servers))

    def save_server(self, fields: Mapping[str, object], original_ip: Optional[str] = None) -> Server:
        """Validate and commit one add (``original_ip`` None) or edit.

        Raises ValidationError without touching the store when the edit
        would break ip uniqueness, the one-level hierarchy or its acyclicity.
        """
        ip = normalize_ip(fields.get("ip"))
        if not ip:
            raise ValidationError("empty ip")
        existing = None
        if original_ip is not None:
            existing = self.find(original_ip)
            if existing is None:
                raise ValidationError(f"unknown server {original_ip}")
        others = [server for server in self._servers if existing is None or server.ip != existing.ip]
        if (existing is None or ip != existing.ip) and any(server.ip == ip for server in others):
            raise ValidationError("duplicate ip")

        parent_ip = normalize_ip(fields.get("parent_ip", existing.parent_ip if existing is not None else ""))
        old_ip = existing.ip if existing is not None else ip
        if parent_ip:
            if parent_ip in (ip, old_ip):
                raise ValidationError("server cannot be its own parent")
            if existing is not None and children_of(self._servers, existing.ip):
                raise ValidationError("parent cannot become child")
            if would_create_cycle(self._servers, old_ip, parent_ip):
                raise ValidationError("circular dependency")
            parent = next((server for server in others if server.ip == parent_ip), None)
            if parent is None:
                raise ValidationError("unknown parent")
            if parent.parent_ip:
                raise ValidationError("parent is already a child")

        base = existing or Server(ip=ip, tag_color=self.settings.default_tag_color)
        edited = Server(
            ip=ip,
            comment=optional_text(fields.get("comment", base.comment)),
            tag=optional_text(fields.get("tag", base.tag)),
            tag_color=normalize_tag_color(fields.get("tag_color", base.tag_color), base.tag_color),
            parent_ip=parent_ip,
            ignore_in_list=parse_flag(fields.get("ignore_in_list"), base.ignore_in_list),
            priority=base.priority,
        )
        has_children = existing is not None and bool(children_of(self._servers, existing.ip))
        edited.server_type = edited.derive_type(has_children)

        def commit(servers: List[Server]) -> List[Server]:
            if existing is not None and ip != existing.ip:
                for server in servers:
                    if server.parent_ip == existing.ip:
                        server.parent_ip = ip
            for server in servers:
                if server.ip == parent_ip and server.server_type == STANDALONE:
                    server.server_type = PARENT
            if existing is None:
                edited.priority = (len(servers) + 1) * 10
                servers.append(edited)
                return servers
            return [edited if server.ip == existing.ip else server for server in servers]

        self.apply(commit)
        logger.debug("Saved server %s (%s)", ip, "added" if existing is None else "edited")
        return self.find(ip)

    def remove_server(self, ip: str) -> List[str]:
        """Remove a server; a root also takes its children with it."""
        target = self.find(ip)
        if target is None:
            return []
        removed = [target.ip]
        if target.is_root:
            removed.extend(server.ip for server in children_of(self._servers, target.ip))
        doomed = set(removed)
        self.apply(lambda servers: [server for server in servers if server.ip not in doomed])
        logger.debug("Removed %s", ", ".join(removed))
        return removed

    def remove_all(self) -> None:
        self.apply(lambda servers: [])

    def replace(self, config: Config) -> None:
        """Bulk replacement (import). Validates the whole batch before writing."""
        ips = [server.ip for server in config.servers]
        if any(not ip for ip in ips):
            raise ValidationError("empty ip")
        duplicates = duplicate_values(ips)
        if duplicates:
            raise ValidationError(f"Duplicate ip in import: {', '.join(duplicates)}")
        forest = build_tree(config.servers)
        if tree_depth(forest) > 1:
            raise ValidationError("parent cannot become child")
        # Servers whose parent links loop never hang off a root.
        placed = {server.ip for server in flatten_tree(forest)}
        stranded = [ip for ip in ips if ip not in placed]
        if stranded:
            raise ValidationError(f"circular dependency: {', '.join(stranded)}")
        self.footer = config.footer
        self.show_offline_by_default = config.show_offline_by_default
        self.apply(lambda servers: flatten_tree(forest))

    def commit_tree(self, forest: List[Server]) -> List[Server]:
        """Commit the tree as left by a drag and drop gesture."""
        if tree_depth(forest) > 1:
            raise ValidationError("parent cannot become child")
        flat = flatten_tree(forest)
        duplicates = duplicate_values(server.ip for server in flat)
        if duplicates:
            raise ValidationError("duplicate ip")
        return self.apply(lambda servers: flat)

    def set_footer(self, footer: str) -> None:
        self.footer = optional_text(footer)

    def set_show_offline(self, value: bool) -> None:
        self.show_offline_by_default = bool(value)

    def type_counts(self) -> Dict[str, int]:
        counts = {STANDALONE: 0, PARENT: 0, CHILD: 0}
        for server in self._servers:
            counts[server.server_type] = counts.get(server.server_type, 0) + 1
        return counts
