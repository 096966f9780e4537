import logging
from typing import List, Mapping, Optional

from hierarchy import DragState, can_move
from import_export import (
    build_chat_command,
    build_share_url,
    config_from_clipboard,
    export_json_text,
    export_xlsx,
    load_json,
    resolve_import_text,
    save_json,
)
from models import CHILD, PARENT, STANDALONE, Config, EditorError, Server
from store import ConfigStore, EditorSettings, load_settings

logger = logging.getLogger(__name__)


class MainController:
    """Glue between a server list view and the config store.

    The view is any object providing ``confirm(title, message) -> bool``,
    ``show_error(title, message)``, ``set_status(text)``,
    ``populate_tree(forest)`` and ``set_dragging_child(flag)``.
    """

    def __init__(self, view, store: Optional[ConfigStore] = None, settings: Optional[EditorSettings] = None) -> None:
        self.view = view
        self.settings = settings or load_settings()
        self.store = store or ConfigStore(settings=self.settings)
        self.drag_state = DragState()
        # Last text the user tried to import; kept so a failed import can be corrected.
        self.pending_import_text = ""
        self.store.subscribe(self.view.populate_tree)
        self.view.populate_tree(self.store.tree)

    def _prefixes(self) -> List[str]:
        return [self.settings.command_prefix]

    def refresh_status(self) -> None:
        counts = self.store.type_counts()
        total = sum(counts.values())
        self.view.set_status(
            f"{total} servers ({counts[PARENT]} parents, "
            f"{counts[CHILD]} children, {counts[STANDALONE]} standalone)"
        )

    def load_initial(self, url_text: Optional[str] = None, clipboard_text: Optional[str] = None) -> bool:
        """Seed the editor from a share URL, else from config-shaped clipboard JSON."""
        if url_text:
            try:
                config = resolve_import_text(url_text, self._prefixes(), self.settings.query_param)
            except EditorError as exc:
                self.view.show_error("Import failed", str(exc))
            else:
                return self._apply_import(config, "link")
        if clipboard_text:
            try:
                config = config_from_clipboard(clipboard_text)
            except EditorError as exc:
                logger.info("Clipboard config ignored: %s", exc)
                config = None
            if config is not None:
                return self._apply_import(config, "clipboard")
        return False

    def import_text(self, text: str) -> bool:
        self.pending_import_text = text
        try:
            config = resolve_import_text(text, self._prefixes(), self.settings.query_param)
        except EditorError as exc:
            logger.info("Import rejected: %s", exc)
            self.view.show_error("Import failed", str(exc))
            return False
        if self.store.servers:
            message = f"Replace the current {len(self.store.servers)} servers with {len(config.servers)} imported servers?"
            if not self.view.confirm("Overwrite servers", message):
                return False
        if not self._apply_import(config, "import"):
            return False
        self.pending_import_text = ""
        return True

    def _apply_import(self, config: Config, source: str) -> bool:
        try:
            self.store.replace(config)
        except EditorError as exc:
            logger.info("Import from %s rejected: %s", source, exc)
            self.view.show_error("Import failed", str(exc))
            return False
        self.view.set_status(f"Imported {len(config.servers)} servers from {source}.")
        return True

    def save_server(self, fields: Mapping[str, object], original_ip: Optional[str] = None) -> bool:
        try:
            self.store.save_server(fields, original_ip)
        except EditorError as exc:
            logger.info("Save rejected for %s: %s", fields.get("ip"), exc)
            self.view.show_error("Cannot save server", str(exc))
            return False
        self.refresh_status()
        return True

    def remove_server(self, ip: str) -> bool:
        server = self.store.find(ip)
        if server is None:
            return False
        message = f"Delete {ip}?"
        if server.is_root and server.server_type == PARENT:
            message = f"Delete {ip} and all of its child servers?"
        if not self.view.confirm("Delete server", message):
            return False
        self.store.remove_server(ip)
        self.refresh_status()
        return True

    def remove_all(self) -> bool:
        if not self.store.servers:
            return False
        if not self.view.confirm("Delete all servers", "Delete every server in the list?"):
            return False
        self.store.remove_all()
        self.refresh_status()
        return True

    def set_footer(self, footer: str) -> None:
        self.store.set_footer(footer)

    def set_show_offline(self, value: bool) -> None:
        self.store.set_show_offline(value)

    def on_drag_hover(self, dragged: Server, target_is_child_level: bool) -> bool:
        allowed = can_move(dragged, target_is_child_level, self.drag_state)
        self.view.set_dragging_child(self.drag_state.dragging_child)
        return allowed

    def on_drag_end(self, forest: List[Server]) -> bool:
        self.drag_state.dragging_child = False
        self.view.set_dragging_child(False)
        try:
            self.store.commit_tree(forest)
        except EditorError as exc:
            self.view.show_error("Move rejected", str(exc))
            # Snap the view back to the committed tree.
            self.view.populate_tree(self.store.tree)
            return False
        self.refresh_status()
        return True

    def export_json_text(self) -> str:
        return export_json_text(self.store.snapshot())

    def share_url(self) -> str:
        return build_share_url(self.store.snapshot(), self.settings.share_base_url, self.settings.query_param)

    def chat_command(self) -> str:
        return build_chat_command(self.store.snapshot(), self.settings.command_prefix)

    def open_json(self, file_path: str) -> bool:
        try:
            config = load_json(file_path)
        except (OSError, EditorError) as exc:
            self.view.show_error("Open failed", str(exc))
            return False
        if self.store.servers and not self.view.confirm("Overwrite servers", f"Replace the current servers with {file_path}?"):
            return False
        return self._apply_import(config, file_path)

    def save_json(self, file_path: str) -> bool:
        try:
            save_json(file_path, self.store.snapshot())
        except OSError as exc:
            self.view.show_error("Save failed", str(exc))
            return False
        return True

    def export_xlsx(self, file_path: str) -> bool:
        if not self.store.servers:
            self.view.show_error("Nothing to export", "There are no servers to export.")
            return False
        try:
            export_xlsx(file_path, self.store.snapshot())
        except (OSError, RuntimeError) as exc:
            self.view.show_error("Export failed", str(exc))
            return False
        return True
