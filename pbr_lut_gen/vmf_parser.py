"""
VMF KeyValues Parser — lossless round-trip parser for Valve Map Format files.

VMF files use Valve's KeyValues format: nested blocks of key-value pairs
enclosed in braces, with string values quoted. This parser preserves the
complete structure so the PBR pipeline can rewrite entities, connections
and brush planes in place and save the map again.

Example VMF structure:
    world
    {
        "id" "1"
        "classname" "worldspawn"
        solid
        {
            "id" "2"
            side
            {
                "id" "3"
                "plane" "(0 0 0) (1 0 0) (1 1 0)"
                "material" "TOOLS/TOOLSPBR"
            }
        }
    }
    entity
    {
        "id" "10"
        "classname" "light"
        connections
        {
            "OnTrigger" "door_light\x1bTurnOff\x1b\x1b0.5\x1b-1"
        }
    }
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .errors import PBRError

Vec3 = Tuple[float, float, float]


@dataclass
class KVNode:
    """A node in the KeyValues tree.

    Each node has a name (the block type, e.g. 'world', 'solid', 'side')
    and contains an ordered list of children, which can be either:
      - KVPair: a key-value pair like "material" "TOOLS/TOOLSPBR"
      - KVNode: a nested block like side { ... }
    """
    name: str
    children: List[Union[KVPair, KVNode]] = field(default_factory=list)

    def get_property(self, key: str) -> Optional[str]:
        """Get the value of a key-value pair by key name (case-insensitive)."""
        key_lower = key.lower()
        for child in self.children:
            if isinstance(child, KVPair) and child.key.lower() == key_lower:
                return child.value
        return None

    def set_property(self, key: str, value: str) -> bool:
        """Set a key-value pair, appending it when missing.

        Returns True if the key already existed.
        """
        key_lower = key.lower()
        for child in self.children:
            if isinstance(child, KVPair) and child.key.lower() == key_lower:
                child.value = value
                return True
        # Insert after the last pair so new keys stay above nested blocks
        insert_at = 0
        for i, child in enumerate(self.children):
            if isinstance(child, KVPair):
                insert_at = i + 1
        self.children.insert(insert_at, KVPair(key=key, value=value))
        return False

    def get_children_by_name(self, name: str) -> List[KVNode]:
        """Get all child nodes with the given name."""
        return [c for c in self.children
                if isinstance(c, KVNode) and c.name == name]


@dataclass
class KVPair:
    """A key-value pair in the KeyValues tree."""
    key: str
    value: str


class VMFParseError(PBRError):
    """Raised when the VMF parser encounters invalid syntax."""
    pass


class VMFParser:
    """Parses VMF (KeyValues) files into a tree of KVNode and KVPair objects."""

    def __init__(self):
        # Regex to match a quoted string: "content"
        self._quoted_re = re.compile(r'"([^"]*)"')

    def parse_file(self, filepath: Union[str, Path]) -> KVNode:
        """Parse a VMF file and return the root node."""
        filepath = Path(filepath)
        text = filepath.read_text(encoding='utf-8', errors='replace')
        return self.parse_string(text, str(filepath))

    def parse_string(self, text: str, source: str = "<string>") -> KVNode:
        """Parse a VMF string and return a root node containing all top-level blocks."""
        root = KVNode(name="__root__")
        lines = text.splitlines()
        idx = 0
        while idx < len(lines):
            idx, result = self._parse_next(lines, idx, source)
            if result is not None:
                root.children.append(result)
        return root

    def _skip_whitespace_lines(self, lines: List[str], idx: int) -> int:
        while idx < len(lines) and lines[idx].strip() == '':
            idx += 1
        return idx

    def _parse_next(self, lines: List[str], idx: int,
                    source: str) -> Tuple[int, Optional[Union[KVNode, KVPair]]]:
        """Parse the next element (block or key-value pair) starting at line idx."""
        idx = self._skip_whitespace_lines(lines, idx)
        if idx >= len(lines):
            return idx, None

        line = lines[idx].strip()

        if line == '' or line.startswith('//'):
            return idx + 1, None

        if line == '}':
            return idx + 1, None

        # Key-value pair: "key" "value"
        matches = self._quoted_re.findall(lines[idx])
        if len(matches) >= 2:
            return idx + 1, KVPair(key=matches[0], value=matches[1])

        # Block name, with { on the same or the next line
        block_name = line.rstrip('{').strip().strip('"')
        if not block_name:
            raise VMFParseError(
                f"{source}:{idx + 1}: unexpected '{{' without block name")

        if line.endswith('{'):
            idx += 1
        else:
            idx += 1
            idx = self._skip_whitespace_lines(lines, idx)
            if idx < len(lines) and lines[idx].strip() == '{':
                idx += 1
            else:
                raise VMFParseError(
                    f"{source}:{idx + 1}: expected '{{' after block name '{block_name}'")

        node = KVNode(name=block_name)
        while idx < len(lines):
            peek_idx = self._skip_whitespace_lines(lines, idx)
            if peek_idx >= len(lines):
                break
            if lines[peek_idx].strip() == '}':
                idx = peek_idx + 1
                break
            idx, child = self._parse_next(lines, idx, source)
            if child is not None:
                node.children.append(child)

        return idx, node


class VMFWriter:
    """Serializes a KVNode tree back to VMF format."""

    def write_file(self, root: KVNode, filepath: Union[str, Path]) -> None:
        """Write the KVNode tree to a file."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        text = self.write_string(root)
        filepath.write_text(text, encoding='utf-8')

    def write_string(self, root: KVNode) -> str:
        """Serialize the KVNode tree to a string."""
        lines: List[str] = []
        if root.name == "__root__":
            for child in root.children:
                self._write_element(child, lines, depth=0)
        else:
            self._write_element(root, lines, depth=0)
        return '\n'.join(lines) + '\n'

    def _write_element(self, element: Union[KVNode, KVPair],
                       lines: List[str], depth: int) -> None:
        indent = '\t' * depth
        if isinstance(element, KVPair):
            lines.append(f'{indent}"{element.key}" "{element.value}"')
        elif isinstance(element, KVNode):
            lines.append(f'{indent}{element.name}')
            lines.append(f'{indent}{{')
            for child in element.children:
                self._write_element(child, lines, depth + 1)
            lines.append(f'{indent}}}')


# ─── Map wrapper ──────────────────────────────────────────────────────────────

class VMFMap:
    """A parsed map: the world block plus the top-level entity blocks.

    The entity list is read live from the root node, so entities added
    with add_entity() or removed with remove_entities() are immediately
    visible and are written back by save().
    """

    def __init__(self, root: KVNode):
        self.root = root

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> VMFMap:
        return cls(VMFParser().parse_file(filepath))

    @classmethod
    def from_string(cls, text: str) -> VMFMap:
        return cls(VMFParser().parse_string(text))

    @property
    def world(self) -> Optional[KVNode]:
        worlds = self.root.get_children_by_name('world')
        return worlds[0] if worlds else None

    @property
    def entities(self) -> List[KVNode]:
        return self.root.get_children_by_name('entity')

    def world_solids(self) -> List[KVNode]:
        world = self.world
        return world.get_children_by_name('solid') if world is not None else []

    def add_entity(self, entity: KVNode) -> None:
        self.root.children.append(entity)

    def remove_entities(self, predicate: Callable[[KVNode], bool]) -> int:
        """Drop every entity for which predicate(entity) is true."""
        before = len(self.root.children)
        self.root.children = [
            c for c in self.root.children
            if not (isinstance(c, KVNode) and c.name == 'entity' and predicate(c))
        ]
        return before - len(self.root.children)

    def save(self, filepath: Union[str, Path]) -> None:
        VMFWriter().write_file(self.root, filepath)

    def to_string(self) -> str:
        return VMFWriter().write_string(self.root)


# ─── Entity helpers ───────────────────────────────────────────────────────────

def classname(entity: KVNode) -> str:
    return entity.get_property('classname') or ''


def targetname(entity: KVNode) -> Optional[str]:
    """Target name of an entity; an empty value counts as absent."""
    name = entity.get_property('targetname')
    return name if name else None


def entity_id(entity: KVNode) -> str:
    return entity.get_property('id') or '0'


def entity_solids(entity: KVNode) -> List[KVNode]:
    return entity.get_children_by_name('solid')


def solid_sides(solid: KVNode) -> List[KVNode]:
    return solid.get_children_by_name('side')


def side_has_displacement(side: KVNode) -> bool:
    return bool(side.get_children_by_name('dispinfo'))


def make_entity(entity_classname: str) -> KVNode:
    """New entity block with only a classname (no id, Hammer assigns one)."""
    return KVNode(name='entity', children=[KVPair('classname', entity_classname)])


def entity_connections(entity: KVNode) -> List[Tuple[str, str]]:
    """All (output, value) pairs from the entity's connections blocks."""
    result = []
    for block in entity.get_children_by_name('connections'):
        for child in block.children:
            if isinstance(child, KVPair):
                result.append((child.key, child.value))
    return result


def add_connection(entity: KVNode, output: str, value: str) -> bool:
    """Append an output connection, creating the block on demand.

    Returns False if the exact same connection is already present.
    """
    blocks = entity.get_children_by_name('connections')
    if blocks:
        block = blocks[0]
    else:
        block = KVNode(name='connections')
        entity.children.append(block)
    for child in block.children:
        if isinstance(child, KVPair) and child.key == output and child.value == value:
            return False
    block.children.append(KVPair(key=output, value=value))
    return True


# ─── Value parsing ────────────────────────────────────────────────────────────

_PLANE_POINT_RE = re.compile(
    r'\(\s*([-+\d.eE]+)\s+([-+\d.eE]+)\s+([-+\d.eE]+)\s*\)')


def parse_vector(s: Optional[str]) -> Vec3:
    """Parse a space-separated vector string like '128 64 32'.

    Anything that is not three numbers gives the origin.
    """
    if not s:
        return (0.0, 0.0, 0.0)
    parts = []
    for token in s.split():
        try:
            parts.append(float(token))
        except ValueError:
            continue
    if len(parts) < 3:
        return (0.0, 0.0, 0.0)
    return (parts[0], parts[1], parts[2])


def parse_plane_points(s: str) -> Optional[Tuple[Vec3, Vec3, Vec3]]:
    """Parse '(0 0 0) (128 0 0) (128 128 0)' into exactly three points."""
    points = []
    for groups in _PLANE_POINT_RE.findall(s or ''):
        try:
            points.append((float(groups[0]), float(groups[1]), float(groups[2])))
        except ValueError:
            return None
    if len(points) != 3:
        return None
    return (points[0], points[1], points[2])


def _fmt(v: float) -> str:
    return f"{v:.4f}"


def format_plane_points(points: Tuple[Vec3, Vec3, Vec3]) -> str:
    return ' '.join(f"({_fmt(p[0])} {_fmt(p[1])} {_fmt(p[2])})" for p in points)


def offset_plane_points(plane_str: str, offset: Vec3) -> str:
    """Translate a plane definition string; unparseable strings pass through."""
    points = parse_plane_points(plane_str)
    if points is None:
        return plane_str
    moved = tuple(
        (p[0] + offset[0], p[1] + offset[1], p[2] + offset[2]) for p in points
    )
    return format_plane_points(moved)


def offset_side_vertices(side: KVNode, offset: Vec3) -> None:
    """Translate the cached vertices_plus list of a side, if any."""
    for vp in side.get_children_by_name('vertices_plus'):
        for child in vp.children:
            if isinstance(child, KVPair) and child.key == 'v':
                x, y, z = parse_vector(child.value)
                child.value = (f"{_fmt(x + offset[0])} {_fmt(y + offset[1])} "
                               f"{_fmt(z + offset[2])}")
