from dataclasses import dataclass, field
from typing import Any, Dict, List

STANDALONE = "standalone"
PARENT = "parent"
CHILD = "child"
SERVER_TYPES = (STANDALONE, PARENT, CHILD)

DEFAULT_TAG_COLOR = "FF9800"


class EditorError(ValueError):
    """Base class for errors surfaced to the user as a message."""


class ValidationError(EditorError):
    """A user-correctable edit was rejected; nothing was changed."""


class FormatError(EditorError):
    """Input text or payload could not be parsed; nothing was changed."""


@dataclass
class Server:
    ip: str
    comment: str = ""
    tag: str = ""
    tag_color: str = DEFAULT_TAG_COLOR
    parent_ip: str = ""
    server_type: str = STANDALONE
    ignore_in_list: bool = False
    priority: int = 0
    # Only populated on tree projections, never on the canonical flat list.
    children: List["Server"] = field(default_factory=list, repr=False, compare=False)

    @property
    def tag_color_with_hash(self) -> str:
        return f"#{self.tag_color}"

    @property
    def is_root(self) -> bool:
        return not self.parent_ip

    def derive_type(self, has_children: bool) -> str:
        if self.parent_ip:
            return CHILD
        if has_children:
            return PARENT
        return STANDALONE

    def copy(self) -> "Server":
        return Server(
            ip=self.ip,
            comment=self.comment,
            tag=self.tag,
            tag_color=self.tag_color,
            parent_ip=self.parent_ip,
            server_type=self.server_type,
            ignore_in_list=self.ignore_in_list,
            priority=self.priority,
        )

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ip": self.ip,
            "comment": self.comment,
            "tag": self.tag,
            "tag_color": self.tag_color,
            "parent_ip": self.parent_ip,
            "server_type": self.server_type,
            "ignore_in_list": self.ignore_in_list,
            "priority": self.priority,
        }
        if include_children:
            payload["children"] = [child.to_dict(include_children=True) for child in self.children]
        return payload


@dataclass
class Config:
    footer: str = ""
    show_offline_by_default: bool = False
    servers: List[Server] = field(default_factory=list)

    def server_ips(self) -> List[str]:
        return [server.ip for server in self.servers]
