"""
Data model for the connection tree.

A configuration holds an ordered list of root nodes. Every node is either a
connection (a leaf describing how to reach one host) or a folder owning an
ordered list of child nodes. Nodes carry no reference to their parent.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config

logger = logging.getLogger(__name__)


class Protocol(str, Enum):
    """Remote protocols a connection can describe."""

    SSH = "ssh"
    RDP = "rdp"
    VNC = "vnc"
    HTTP = "http"
    HTTPS = "https"
    TELNET = "telnet"
    UNKNOWN = "unknown"

    @property
    def default_port(self) -> int:
        return _DEFAULT_PORTS.get(self, 0)

    @classmethod
    def parse(cls, value: Any) -> "Protocol":
        """Map a wire value onto a Protocol, falling back to UNKNOWN."""
        if isinstance(value, Protocol):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unrecognized protocol {value!r}, treating as unknown")
            return cls.UNKNOWN


_DEFAULT_PORTS = {
    Protocol.SSH: 22,
    Protocol.RDP: 3389,
    Protocol.VNC: 5900,
    Protocol.HTTP: 80,
    Protocol.HTTPS: 443,
    Protocol.TELNET: 23,
}


class NodeType(str, Enum):
    CONNECTION = "connection"
    FOLDER = "folder"


# Wire order of known node keys. Anything else read from a file lands in
# Node.extras and is written back after these.
NODE_KEYS = (
    "name", "type", "protocol", "host", "port", "username", "password",
    "domain", "description", "children", "use_credssp", "color_depth",
    "resolution", "extra_args", "tags", "notes", "created", "modified",
)

# Fields that update/clear operations may touch on a connection.
EDITABLE_FIELDS = (
    "protocol", "host", "port", "username", "password", "domain",
    "description", "use_credssp", "color_depth", "resolution", "extra_args",
    "tags", "notes",
)


@dataclass
class Node:
    """A connection or a folder in the configuration tree."""
    name: str
    type: NodeType = NodeType.CONNECTION
    protocol: Optional[Protocol] = None
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    domain: str = ""
    description: str = ""
    children: List["Node"] = field(default_factory=list)
    use_credssp: bool = False
    color_depth: int = 0
    resolution: str = ""
    extra_args: str = ""
    tags: List[str] = field(default_factory=list)
    notes: str = ""
    created: str = ""
    modified: str = ""
    extras: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = NodeType(self.type)
        if self.protocol is not None:
            self.protocol = Protocol.parse(self.protocol)
        if self.children is None:
            self.children = []
        if self.type is NodeType.CONNECTION and self.children:
            raise ValueError(f"connection '{self.name}' cannot have children")

    @classmethod
    def connection(cls, name: str, protocol: Protocol = Protocol.SSH, **fields) -> "Node":
        """
        Create a connection node. The protocol defaults to SSH, so build
        partials for :func:`connvault.tree.update` with ``Node(name=...)``
        instead; a partial from this factory always sets the protocol.
        """
        return cls(name=name, type=NodeType.CONNECTION, protocol=protocol, **fields)

    @classmethod
    def folder(cls, name: str, children: Optional[List["Node"]] = None) -> "Node":
        """Create a folder node, empty unless *children* is given."""
        return cls(name=name, type=NodeType.FOLDER, children=list(children or []))

    @property
    def is_folder(self) -> bool:
        return self.type is NodeType.FOLDER

    @property
    def effective_port(self) -> int:
        """The configured port, or the protocol default when it is 0."""
        if self.port:
            return self.port
        return self.protocol.default_port if self.protocol else 0

    def add_child(self, child: "Node") -> None:
        if not self.is_folder:
            raise ValueError(f"cannot add '{child.name}' to connection '{self.name}'")
        self.children.append(child)

    def deep_copy(self) -> "Node":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the wire mapping.

        Zero-valued optional fields are left out so hand-edited files stay
        minimal. Folders always carry a ``children`` list.
        """
        data: Dict[str, Any] = {"name": self.name, "type": self.type.value}
        for key in NODE_KEYS[2:]:
            if key == "children":
                if self.is_folder:
                    data["children"] = [child.to_dict() for child in self.children]
                continue
            value = getattr(self, key)
            if not value:
                continue
            if key == "protocol":
                value = value.value
            elif key == "tags":
                value = list(value)
            data[key] = value
        for key, value in self.extras.items():
            if key not in data:
                data[key] = copy.deepcopy(value)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        """
        Create from a wire mapping.

        Raises:
            ValueError: If the mapping is not a valid node.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping for a node, got {type(data).__name__}")
        name = data.get("name")
        if not name:
            raise ValueError("node is missing a name")
        try:
            node_type = NodeType(data.get("type") or NodeType.CONNECTION.value)
        except ValueError:
            raise ValueError(f"node '{name}' has invalid type {data.get('type')!r}")

        raw_children = data.get("children") or []
        if not isinstance(raw_children, list):
            raise ValueError(f"children of '{name}' must be a list")
        if node_type is NodeType.CONNECTION and raw_children:
            raise ValueError(f"connection '{name}' cannot have children")

        protocol = data.get("protocol")
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            tags = [tags]

        return cls(
            name=str(name),
            type=node_type,
            protocol=Protocol.parse(protocol) if protocol else None,
            host=_text(data.get("host")),
            port=int(data.get("port") or 0),
            username=_text(data.get("username")),
            password=_text(data.get("password")),
            domain=_text(data.get("domain")),
            description=_text(data.get("description")),
            children=[cls.from_dict(child) for child in raw_children],
            use_credssp=bool(data.get("use_credssp", False)),
            color_depth=int(data.get("color_depth") or 0),
            resolution=_text(data.get("resolution")),
            extra_args=_text(data.get("extra_args")),
            tags=[str(tag) for tag in tags],
            notes=_text(data.get("notes")),
            created=_text(data.get("created")),
            modified=_text(data.get("modified")),
            extras={k: v for k, v in data.items() if k not in NODE_KEYS},
        )


def _text(value: Any) -> str:
    # YAML turns unquoted timestamps and numbers into non-strings
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


@dataclass
class Settings:
    """Global settings stored alongside the connections."""
    onepassword_account: str = ""
    vault_names: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"onepassword_account": self.onepassword_account}
        if self.vault_names:
            data["vault_names"] = dict(self.vault_names)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Settings":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("settings must be a mapping")
        vault_names = data.get("vault_names") or {}
        if not isinstance(vault_names, dict):
            raise ValueError("settings.vault_names must be a mapping")
        return cls(
            onepassword_account=_text(data.get("onepassword_account")),
            vault_names={str(k): str(v) for k, v in vault_names.items()},
        )


@dataclass
class Configuration:
    """The root aggregate persisted to one configuration file."""
    version: str = config.CONFIG_FORMAT_VERSION
    settings: Settings = field(default_factory=Settings)
    connections: List[Node] = field(default_factory=list)

    def deep_copy(self) -> "Configuration":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "settings": self.settings.to_dict(),
            "connections": [node.to_dict() for node in self.connections],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Configuration":
        """
        Create from a parsed document. ``None`` (an empty file) gives an
        empty configuration.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("configuration document must be a mapping")
        connections = data.get("connections") or []
        if not isinstance(connections, list):
            raise ValueError("connections must be a list")
        return cls(
            version=_text(data.get("version")) or config.CONFIG_FORMAT_VERSION,
            settings=Settings.from_dict(data.get("settings")),
            connections=[Node.from_dict(item) for item in connections],
        )
