"""Scene graph model for VRM/glTF documents.

The JSON chunk of a GLB is mapped onto typed nodes and constraints; every
other part of the document (materials, textures, animations, the VRMC_vrm
and VRMC_springBone extensions, unknown extensions and extras) is carried
opaquely and written back as it was read.

Node hierarchy and constraints live side by side in one flat list of nodes
indexed by their position in the document. Nodes never hold references to
each other, only indices.
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from glb_types import Container
from vrm_errors import (
    InvalidConstraintReference,
    InvalidConstraintWeight,
    InvalidDescription,
    MissingRequiredField,
    ReferentialIntegrityError,
)
from vrm_math import IDENTITY, Quat, Vec3, decompose_matrix

logger = logging.getLogger(__name__)

CONSTRAINT_EXTENSION = "VRMC_node_constraint"
CONSTRAINT_SPEC_VERSION = "1.0"

ZERO3: Vec3 = (0.0, 0.0, 0.0)
ONE3: Vec3 = (1.0, 1.0, 1.0)

AIM_AXES = {
    "PositiveX": (1.0, 0.0, 0.0),
    "NegativeX": (-1.0, 0.0, 0.0),
    "PositiveY": (0.0, 1.0, 0.0),
    "NegativeY": (0.0, -1.0, 0.0),
    "PositiveZ": (0.0, 0.0, 1.0),
    "NegativeZ": (0.0, 0.0, -1.0),
}
ROLL_AXES = ("X", "Y", "Z")

# Node extras key holding the pre-constraint rotation of a baked node
REST_ROTATION_KEY = "restRotation"

# Keys of a node object that are mapped onto Node attributes
_NODE_KEYS = ("name", "children", "mesh", "skin", "matrix", "rotation", "scale", "translation", "extensions")

# Top-level keys mapped onto SceneGraph attributes, in glTF's usual order
_ROOT_KEYS = (
    "asset",
    "extensionsUsed",
    "extensionsRequired",
    "scene",
    "scenes",
    "nodes",
    "meshes",
    "skins",
    "accessors",
    "bufferViews",
    "buffers",
    "extensions",
)


class ConstraintKind(str, Enum):
    """Node constraint types of VRMC_node_constraint."""

    ROTATION = "rotation"
    AIM = "aim"
    ROLL = "roll"


@dataclass
class Constraint:
    """A constraint owned by its target node.

    ``roll_axis`` is only used by roll constraints, ``aim_axis`` only by aim
    constraints and ``freeze_axes`` only by rotation constraints.
    """

    target: int
    source: int
    kind: ConstraintKind
    weight: float = 1.0
    roll_axis: Optional[str] = None
    aim_axis: Optional[str] = None
    freeze_axes: Optional[Tuple[bool, bool, bool]] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    envelope: Dict[str, Any] = field(default_factory=lambda: {"specVersion": CONSTRAINT_SPEC_VERSION})

    def to_extension(self) -> Dict[str, Any]:
        """Serialize to a VRMC_node_constraint extension object."""
        body: Dict[str, Any] = {"source": self.source}
        if self.kind is ConstraintKind.ROLL:
            body["rollAxis"] = self.roll_axis
        elif self.kind is ConstraintKind.AIM:
            body["aimAxis"] = self.aim_axis
        elif self.freeze_axes is not None:
            body["freezeAxes"] = list(self.freeze_axes)
        body["weight"] = self.weight
        body.update(self.extra)

        extension = dict(self.envelope)
        extension["constraint"] = {self.kind.value: body}
        return extension

    @classmethod
    def from_extension(cls, target: int, extension: Any, path: str) -> "Constraint":
        """Parse a VRMC_node_constraint extension object.

        Raises:
            MissingRequiredField: If the constraint body or its source is absent
            InvalidConstraintWeight: If the weight is not a number in [0, 1]
        """
        if not isinstance(extension, dict) or not isinstance(extension.get("constraint"), dict):
            raise MissingRequiredField("Constraint extension has no constraint object", path=f"{path}.constraint", node_id=target)

        body_by_kind = extension["constraint"]
        kinds = [k for k in ConstraintKind if k.value in body_by_kind]
        if len(kinds) != 1:
            raise MissingRequiredField(
                "Constraint must hold exactly one of rotation, aim or roll",
                path=f"{path}.constraint",
                node_id=target,
            )
        kind = kinds[0]
        body = body_by_kind[kind.value]
        body_path = f"{path}.constraint.{kind.value}"
        if not isinstance(body, dict):
            raise MissingRequiredField("Constraint body must be an object", path=body_path, node_id=target)

        source = body.get("source")
        if not isinstance(source, int) or isinstance(source, bool):
            raise MissingRequiredField("Constraint has no source node", path=f"{body_path}.source", node_id=target)

        weight = body.get("weight", 1.0)
        if not isinstance(weight, (int, float)) or isinstance(weight, bool):
            raise InvalidConstraintWeight(
                f"Constraint weight must be a number, got {weight!r}",
                path=f"{body_path}.weight",
                node_id=target,
                weight=weight,
            )
        if not 0.0 <= weight <= 1.0:
            raise InvalidConstraintWeight(
                f"Constraint weight {weight} is outside [0, 1]",
                path=f"{body_path}.weight",
                node_id=target,
                weight=weight,
            )

        roll_axis = aim_axis = freeze_axes = None
        if kind is ConstraintKind.ROLL:
            roll_axis = body.get("rollAxis")
            if roll_axis not in ROLL_AXES:
                raise MissingRequiredField(
                    f"Roll constraint needs rollAxis X, Y or Z, got {roll_axis!r}",
                    path=f"{body_path}.rollAxis",
                    node_id=target,
                )
        elif kind is ConstraintKind.AIM:
            aim_axis = body.get("aimAxis", "PositiveY")
            if aim_axis not in AIM_AXES:
                raise MissingRequiredField(
                    f"Unknown aimAxis {aim_axis!r}", path=f"{body_path}.aimAxis", node_id=target
                )
        elif "freezeAxes" in body:
            values = body["freezeAxes"]
            if not isinstance(values, list) or len(values) != 3:
                raise MissingRequiredField(
                    "freezeAxes must hold 3 booleans", path=f"{body_path}.freezeAxes", node_id=target
                )
            freeze_axes = tuple(bool(v) for v in values)

        known = {"source", "weight", "rollAxis", "aimAxis", "freezeAxes"}
        return cls(
            target=target,
            source=source,
            kind=kind,
            weight=weight,
            roll_axis=roll_axis,
            aim_axis=aim_axis,
            freeze_axes=freeze_axes,
            extra={k: v for k, v in body.items() if k not in known},
            envelope={k: v for k, v in extension.items() if k != "constraint"},
        )


@dataclass
class Node:
    """One node of the scene hierarchy with its local TRS transform."""

    index: int
    name: Optional[str] = None
    translation: Vec3 = ZERO3
    rotation: Quat = IDENTITY
    scale: Vec3 = ONE3
    children: List[int] = field(default_factory=list)
    mesh: Optional[int] = None
    skin: Optional[int] = None
    constraint: Optional[Constraint] = None
    extensions: Dict[str, Any] = field(default_factory=dict)
    extra_fields: Dict[str, Any] = field(default_factory=dict)
    # Rotation before constraints were applied; None while it equals ``rotation``
    rest_rotation: Optional[Quat] = field(default=None, compare=False, repr=False)

    # Bookkeeping for faithful re-serialization, ignored by equality
    matrix: Optional[List[float]] = field(default=None, compare=False, repr=False)
    _matrix_trs: Optional[tuple] = field(default=None, compare=False, repr=False)
    _raw_trs: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    _key_order: List[str] = field(default_factory=list, compare=False, repr=False)

    @property
    def trs(self) -> Tuple[Vec3, Quat, Vec3]:
        return self.translation, self.rotation, self.scale

    @property
    def rest(self) -> Quat:
        return self.rest_rotation if self.rest_rotation is not None else self.rotation

    @classmethod
    def from_dict(cls, index: int, obj: Dict[str, Any]) -> "Node":
        path = f"nodes[{index}]"
        node = cls(index=index, name=obj.get("name"))
        node._key_order = list(obj.keys())

        if "matrix" in obj:
            matrix = _read_numbers(obj["matrix"], 16, f"{path}.matrix", index)
            node.translation, node.rotation, node.scale = decompose_matrix(matrix)
            node.matrix = obj["matrix"]
            node._matrix_trs = node.trs
        for key, size in (("translation", 3), ("rotation", 4), ("scale", 3)):
            if key in obj:
                setattr(node, key, _read_numbers(obj[key], size, f"{path}.{key}", index))
                node._raw_trs[key] = obj[key]

        node.children = list(obj.get("children", []))
        node.mesh = obj.get("mesh")
        node.skin = obj.get("skin")

        extensions = dict(obj.get("extensions", {}))
        if CONSTRAINT_EXTENSION in extensions:
            node.constraint = Constraint.from_extension(
                index, extensions.pop(CONSTRAINT_EXTENSION), f"{path}.extensions.{CONSTRAINT_EXTENSION}"
            )
        node.extensions = extensions
        node.extra_fields = {k: v for k, v in obj.items() if k not in _NODE_KEYS}

        extras = obj.get("extras")
        if isinstance(extras, dict) and REST_ROTATION_KEY in extras:
            node.rest_rotation = _read_numbers(
                extras[REST_ROTATION_KEY], 4, f"{path}.extras.{REST_ROTATION_KEY}", index
            )
            extras = {k: v for k, v in extras.items() if k != REST_ROTATION_KEY}
            if extras:
                node.extra_fields["extras"] = extras
            else:
                del node.extra_fields["extras"]
        return node

    def to_dict(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if self.name is not None:
            values["name"] = self.name
        if self.children:
            values["children"] = list(self.children)
        if self.mesh is not None:
            values["mesh"] = self.mesh
        if self.skin is not None:
            values["skin"] = self.skin

        if self.matrix is not None and self.trs == self._matrix_trs:
            values["matrix"] = self.matrix
        else:
            for key, default in (("translation", ZERO3), ("rotation", IDENTITY), ("scale", ONE3)):
                value = getattr(self, key)
                raw = self._raw_trs.get(key)
                if raw is not None and tuple(float(v) for v in raw) == tuple(value):
                    values[key] = raw
                elif raw is not None or tuple(value) != default:
                    values[key] = [float(v) for v in value]

        extensions = dict(self.extensions)
        if self.constraint is not None:
            extensions[CONSTRAINT_EXTENSION] = self.constraint.to_extension()
        if extensions:
            values["extensions"] = extensions

        values.update(self.extra_fields)
        if self.rest_rotation is not None and tuple(self.rest_rotation) != tuple(self.rotation):
            extras = values.get("extras", {})
            if isinstance(extras, dict):
                extras = dict(extras)
                extras[REST_ROTATION_KEY] = [float(v) for v in self.rest_rotation]
                values["extras"] = extras
            else:
                logger.warning("Node %d: extras is not an object, rest rotation not stored", self.index)
        return _ordered(values, self._key_order)


@dataclass
class SceneGraph:
    """A glTF document: typed nodes plus opaque pass-through blocks."""

    asset: Dict[str, Any] = field(default_factory=lambda: {"version": "2.0"})
    nodes: List[Node] = field(default_factory=list)
    scenes: List[Dict[str, Any]] = field(default_factory=list)
    scene: Optional[int] = None
    meshes: List[Dict[str, Any]] = field(default_factory=list)
    skins: List[Dict[str, Any]] = field(default_factory=list)
    accessors: List[Dict[str, Any]] = field(default_factory=list)
    buffer_views: List[Dict[str, Any]] = field(default_factory=list)
    buffers: List[Dict[str, Any]] = field(default_factory=list)
    extensions_used: List[str] = field(default_factory=list)
    extensions_required: List[str] = field(default_factory=list)
    extensions: Dict[str, Any] = field(default_factory=dict)
    passthrough: Dict[str, Any] = field(default_factory=dict)
    binary: Optional[bytes] = None

    _key_order: List[str] = field(default_factory=list, compare=False, repr=False)

    @classmethod
    def from_container(cls, container: Container) -> "SceneGraph":
        """Build a scene graph from a decoded GLB container.

        Raises:
            InvalidDescription: If the JSON chunk is not valid UTF-8 JSON
            SceneGraphError: On missing fields or dangling references
        """
        chunk = container.json_chunk
        try:
            document = json.loads(container.json_data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidDescription(
                f"JSON chunk is not valid JSON: {e}", offset=chunk.offset if chunk else None, chunk_index=0
            ) from e
        if not isinstance(document, dict):
            raise InvalidDescription("JSON chunk must hold an object", offset=chunk.offset if chunk else None, chunk_index=0)
        return cls.from_description(document, container.bin_data)

    @classmethod
    def from_description(cls, document: Dict[str, Any], binary: Optional[bytes] = None) -> "SceneGraph":
        """Build a scene graph from a parsed glTF JSON document."""
        if "asset" not in document:
            raise MissingRequiredField("Document has no asset", path="asset")
        if "version" not in document["asset"]:
            raise MissingRequiredField("Asset has no version", path="asset.version")

        graph = cls(
            asset=document["asset"],
            nodes=[Node.from_dict(i, obj) for i, obj in enumerate(document.get("nodes", []))],
            scenes=list(document.get("scenes", [])),
            scene=document.get("scene"),
            meshes=list(document.get("meshes", [])),
            skins=list(document.get("skins", [])),
            accessors=list(document.get("accessors", [])),
            buffer_views=list(document.get("bufferViews", [])),
            buffers=list(document.get("buffers", [])),
            extensions_used=list(document.get("extensionsUsed", [])),
            extensions_required=list(document.get("extensionsRequired", [])),
            extensions=dict(document.get("extensions", {})),
            passthrough={k: v for k, v in document.items() if k not in _ROOT_KEYS},
            binary=binary,
        )
        graph._key_order = list(document.keys())
        if binary is not None and graph.buffers and "uri" not in graph.buffers[0]:
            # Drop the chunk's zero padding so the buffer matches its declared length
            declared = graph.buffers[0].get("byteLength")
            if isinstance(declared, int) and 0 <= len(binary) - declared < 4:
                graph.binary = bytes(binary[:declared])
        graph.validate()
        logger.debug(
            "Scene graph: %d nodes, %d constraints, %d meshes",
            len(graph.nodes),
            len(graph.constraints),
            len(graph.meshes),
        )
        return graph

    def to_description(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {"asset": self.asset}
        for key, value in (
            ("extensionsUsed", self.extensions_used),
            ("extensionsRequired", self.extensions_required),
        ):
            if value:
                values[key] = list(value)
        if self.scene is not None:
            values["scene"] = self.scene
        for key, value in (
            ("scenes", self.scenes),
            ("nodes", [n.to_dict() for n in self.nodes]),
            ("meshes", self.meshes),
            ("skins", self.skins),
            ("accessors", self.accessors),
            ("bufferViews", self.buffer_views),
            ("buffers", self.buffers),
        ):
            if value:
                values[key] = value
        if self.extensions:
            values["extensions"] = self.extensions
        values.update(self.passthrough)
        return _ordered(values, self._key_order)

    def to_json_bytes(self) -> bytes:
        """Serialize the description deterministically as compact UTF-8 JSON."""
        return json.dumps(self.to_description(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def to_container(self) -> Container:
        return Container.from_parts(self.to_json_bytes(), self.binary)

    @property
    def constraints(self) -> List[Constraint]:
        """All constraints, ordered by target node id."""
        return [n.constraint for n in self.nodes if n.constraint is not None]

    def add_constraint(self, constraint: Constraint):
        """Attach a constraint to its target node, replacing any existing one."""
        if not 0 <= constraint.target < len(self.nodes):
            raise InvalidConstraintReference(
                f"Constraint target {constraint.target} is not a node",
                node_id=constraint.target,
                source=constraint.source,
            )
        self.nodes[constraint.target].constraint = constraint
        if CONSTRAINT_EXTENSION not in self.extensions_used:
            self.extensions_used.append(CONSTRAINT_EXTENSION)

    def parents(self) -> List[Optional[int]]:
        """Parent index of every node, None for roots."""
        parents: List[Optional[int]] = [None] * len(self.nodes)
        for node in self.nodes:
            for child in node.children:
                parents[child] = node.index
        return parents

    def root_nodes(self) -> List[Node]:
        return [n for n, p in zip(self.nodes, self.parents()) if p is None]

    def humanoid_bones(self) -> Dict[str, int]:
        """Humanoid bone name to node index, from VRMC_vrm or legacy VRM."""
        vrm1 = self.extensions.get("VRMC_vrm")
        if isinstance(vrm1, dict):
            bones = vrm1.get("humanoid", {}).get("humanBones", {})
            return {name: bone["node"] for name, bone in bones.items() if "node" in bone}
        vrm0 = self.extensions.get("VRM")
        if isinstance(vrm0, dict):
            bones = vrm0.get("humanoid", {}).get("humanBones", [])
            return {bone["bone"]: bone["node"] for bone in bones if "bone" in bone and "node" in bone}
        return {}

    def validate(self):
        """Check required fields and that every index points at something.

        Raises:
            MissingRequiredField: If a structurally required field is absent
            ReferentialIntegrityError: If an index is out of range or the
                node hierarchy is not a forest
        """
        node_count = len(self.nodes)

        for i, buffer in enumerate(self.buffers):
            _require(buffer, "byteLength", f"buffers[{i}]")
        for i, view in enumerate(self.buffer_views):
            _require(view, "buffer", f"bufferViews[{i}]")
            _require(view, "byteLength", f"bufferViews[{i}]")
            _check_index(view["buffer"], len(self.buffers), f"bufferViews[{i}].buffer")
        for i, accessor in enumerate(self.accessors):
            for key in ("componentType", "count", "type"):
                _require(accessor, key, f"accessors[{i}]")
            if "bufferView" in accessor:
                _check_index(accessor["bufferView"], len(self.buffer_views), f"accessors[{i}].bufferView")
        for i, mesh in enumerate(self.meshes):
            _require(mesh, "primitives", f"meshes[{i}]")
            for j, primitive in enumerate(mesh["primitives"]):
                path = f"meshes[{i}].primitives[{j}]"
                _require(primitive, "attributes", path)
                for semantic, accessor in primitive["attributes"].items():
                    _check_index(accessor, len(self.accessors), f"{path}.attributes.{semantic}")
                if "indices" in primitive:
                    _check_index(primitive["indices"], len(self.accessors), f"{path}.indices")
        for i, skin in enumerate(self.skins):
            _require(skin, "joints", f"skins[{i}]")
            for joint in skin["joints"]:
                _check_index(joint, node_count, f"skins[{i}].joints")
            if "skeleton" in skin:
                _check_index(skin["skeleton"], node_count, f"skins[{i}].skeleton")
            if "inverseBindMatrices" in skin:
                _check_index(skin["inverseBindMatrices"], len(self.accessors), f"skins[{i}].inverseBindMatrices")

        for node in self.nodes:
            path = f"nodes[{node.index}]"
            for child in node.children:
                _check_index(child, node_count, f"{path}.children", node_id=node.index)
            if node.mesh is not None:
                _check_index(node.mesh, len(self.meshes), f"{path}.mesh", node_id=node.index)
            if node.skin is not None:
                _check_index(node.skin, len(self.skins), f"{path}.skin", node_id=node.index)
        self._check_forest()

        for i, scene in enumerate(self.scenes):
            for root in scene.get("nodes", []):
                _check_index(root, node_count, f"scenes[{i}].nodes")
        if self.scene is not None:
            _check_index(self.scene, len(self.scenes), "scene")

        for bone, index in self.humanoid_bones().items():
            _check_index(index, node_count, f"extensions.humanoid.{bone}")

        self._check_binary()

    def _check_forest(self):
        parent: Dict[int, int] = {}
        for node in self.nodes:
            for child in node.children:
                if child in parent:
                    raise ReferentialIntegrityError(
                        f"Node {child} has two parents ({parent[child]} and {node.index})",
                        path=f"nodes[{node.index}].children",
                        index=child,
                        node_id=node.index,
                    )
                parent[child] = node.index

        for node in self.nodes:
            seen = {node.index}
            current = parent.get(node.index)
            while current is not None:
                if current in seen:
                    raise ReferentialIntegrityError(
                        f"Node {node.index} is its own ancestor",
                        path=f"nodes[{node.index}].children",
                        node_id=node.index,
                    )
                seen.add(current)
                current = parent.get(current)

    def _check_binary(self):
        embedded = self.buffers[0] if self.buffers and "uri" not in self.buffers[0] else None
        if self.binary is not None and embedded is None:
            raise ReferentialIntegrityError("BIN chunk present but no buffer refers to it", path="buffers")
        if embedded is not None:
            if self.binary is None:
                raise ReferentialIntegrityError("Buffer 0 has no uri and there is no BIN chunk", path="buffers[0]", index=0)
            if embedded["byteLength"] > len(self.binary):
                raise ReferentialIntegrityError(
                    f"Buffer 0 declares {embedded['byteLength']} bytes, BIN chunk holds {len(self.binary)}",
                    path="buffers[0].byteLength",
                    index=0,
                )


def _require(obj: Dict[str, Any], key: str, path: str):
    if key not in obj:
        raise MissingRequiredField(f"Missing required field {key!r}", path=f"{path}.{key}")


def _check_index(value: Any, count: int, path: str, node_id: Optional[int] = None):
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value < count:
        raise ReferentialIntegrityError(
            f"Index {value!r} out of range (0..{count - 1})", path=path, index=value if isinstance(value, int) else None, node_id=node_id
        )


def _read_numbers(value: Any, size: int, path: str, node_id: int) -> tuple:
    if not isinstance(value, list) or len(value) != size or not all(isinstance(v, (int, float)) for v in value):
        raise MissingRequiredField(f"Expected {size} numbers", path=path, node_id=node_id)
    return tuple(float(v) for v in value)


def _ordered(values: Dict[str, Any], order: Sequence[str]) -> Dict[str, Any]:
    """Re-key values following an original key order, new keys last."""
    result = {k: values[k] for k in order if k in values}
    for k, v in values.items():
        if k not in result:
            result[k] = v
    return result
