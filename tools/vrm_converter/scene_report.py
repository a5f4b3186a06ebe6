"""Human-readable summary of a decoded VRM/glTF document."""
import struct
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from vrm_scene import Node, SceneGraph

COMPONENT_TYPES = {
    5120: "I8",
    5121: "U8",
    5122: "I16",
    5123: "U16",
    5125: "U32",
    5126: "F32",
}

PRIMITIVE_MODES = {
    0: "Points",
    1: "Lines",
    2: "LineLoop",
    3: "LineStrip",
    4: "Triangles",
    5: "TriangleStrip",
    6: "TriangleFan",
}

# Position views smaller than this are dumped vertex by vertex
DUMP_LIMIT = 1000


def position_bounds(points: Sequence[Sequence[float]]) -> Tuple[List[float], List[float]]:
    """Per-axis min/max of vertex positions; all zeros when there are none."""
    if len(points) == 0:
        return [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
    points = np.asarray(points, dtype=float)
    return points.min(axis=0).tolist(), points.max(axis=0).tolist()


def bounding_box(scene: SceneGraph, accessor: Dict) -> Optional[Tuple[List[float], List[float]]]:
    """Min/max declared on an accessor, else computed from the embedded buffer."""
    if "min" in accessor and "max" in accessor:
        return accessor["min"], accessor["max"]
    if accessor.get("componentType") != 5126 or accessor.get("type") != "VEC3":
        return None
    points = read_vec3_floats(scene, accessor)
    if not points:
        return None
    return position_bounds(points)


def read_vec3_floats(scene: SceneGraph, accessor: Dict) -> List[Tuple[float, float, float]]:
    """Read a FLOAT VEC3 accessor from the embedded buffer."""
    if scene.binary is None or "bufferView" not in accessor:
        return []
    view = scene.buffer_views[accessor["bufferView"]]
    if view["buffer"] != 0:
        return []

    start = view.get("byteOffset", 0) + accessor.get("byteOffset", 0)
    stride = view.get("byteStride", 12)
    points = []
    for i in range(accessor["count"]):
        offset = start + i * stride
        if offset + 12 > len(scene.binary):
            break
        points.append(struct.unpack("<3f", scene.binary[offset:offset + 12]))
    return points


def _describe_node(scene: SceneGraph, node: Node, depth: int, lines: List[str]):
    lines.append(f"{'  ' * depth}[{node.index}] name: {node.name!r}")
    for child in node.children:
        _describe_node(scene, scene.nodes[child], depth + 1, lines)


def _describe_accessor(label: str, accessor: Dict) -> str:
    component = COMPONENT_TYPES.get(accessor["componentType"], str(accessor["componentType"]))
    return f"{label} accessor: {accessor['type']} {component} {accessor['count']}"


def describe(scene: SceneGraph) -> str:
    """Build a text report of buffers, scenes, meshes and constraints."""
    lines = []
    if scene.binary is None:
        lines.append("No BIN section")
    else:
        lines.append(f"BIN section has {len(scene.binary)} bytes")

    for index, entry in enumerate(scene.scenes):
        roots = entry.get("nodes", [])
        lines.append(f"Scene #{index} has {len(roots)} children")
        for root in roots:
            _describe_node(scene, scene.nodes[root], 0, lines)

    for index, mesh in enumerate(scene.meshes):
        primitives = mesh["primitives"]
        lines.append(f"Mesh #{index} has {len(primitives)} primitives. name = {mesh.get('name')!r}")
        for p_index, primitive in enumerate(primitives):
            positions = primitive["attributes"].get("POSITION")
            position_accessor = scene.accessors[positions] if positions is not None else None
            mode = PRIMITIVE_MODES.get(primitive.get("mode", 4), str(primitive.get("mode")))
            bounds = bounding_box(scene, position_accessor) if position_accessor else None
            lines.append(f"primitive #{p_index}: Mode = {mode}, BB = {bounds}")

            if position_accessor is None or "indices" not in primitive:
                continue
            lines.append(_describe_accessor("Positions", position_accessor))
            lines.append(_describe_accessor("Indices", scene.accessors[primitive["indices"]]))

            if "bufferView" not in position_accessor:
                continue
            view = scene.buffer_views[position_accessor["bufferView"]]
            lines.append(
                f"View: len {view['byteLength']} bytes, ofs {view.get('byteOffset', 0)} bytes, "
                f"stride: {view.get('byteStride')}, name: {view.get('name')!r}"
            )
            buffer = scene.buffers[view["buffer"]]
            source = buffer.get("uri", "BIN chunk")
            lines.append(
                f"Buf #{view['buffer']}: from {source}, name {buffer.get('name')!r}, len {buffer['byteLength']} bytes"
            )
            if view["byteLength"] < DUMP_LIMIT:
                points = read_vec3_floats(scene, position_accessor)
                lines.append(f"{len(points)} vertices")
                for point in points:
                    lines.append(f"({point[0]:.4f}, {point[1]:.4f}, {point[2]:.4f})")

    constraints = scene.constraints
    if constraints:
        lines.append(f"{len(constraints)} node constraints")
        for c in constraints:
            kind = f"{c.kind.value} {c.roll_axis or c.aim_axis or ''}".strip()
            lines.append(f"  node {c.target}: {kind} from node {c.source}, weight {c.weight}")

    humanoid = scene.humanoid_bones()
    if humanoid:
        lines.append(f"Humanoid: {len(humanoid)} bones")

    return "\n".join(lines)
