"""Minimal glTF document used to smoke-test the GLB writer."""
import json
import struct
from typing import Tuple

from pygltflib import (
    ARRAY_BUFFER,
    ELEMENT_ARRAY_BUFFER,
    FLOAT,
    GLTF2,
    SCALAR,
    TRIANGLES,
    UNSIGNED_INT,
    VEC3,
    Accessor,
    Asset,
    Attributes,
    Buffer,
    BufferView,
    Mesh,
    Node,
    Primitive,
    Scene,
)

from scene_report import position_bounds
from vrm_scene import SceneGraph

# position(12) + color(12)
VERTEX_STRIDE = 24

# (position, color)
DEFAULT_VERTICES = [
    ((0.0, 0.5, 0.0), (1.0, 0.0, 0.0)),
    ((-0.5, -0.5, 0.0), (0.0, 1.0, 0.0)),
    ((0.5, -0.5, 0.0), (0.0, 0.0, 1.0)),
    ((0.0, 0.0, 1.0), (0.0, 0.0, 1.0)),
]
DEFAULT_TRIANGLES = [(0, 1, 2), (1, 2, 3)]


def align4(data: bytes) -> bytes:
    """Pad bytes with zeros to a 4-byte boundary."""
    if len(data) % 4 != 0:
        data += b"\x00" * (4 - len(data) % 4)
    return data


def build_default_gltf(vertices=None, triangles=None) -> Tuple[GLTF2, bytes]:
    """Build the default coloured mesh as a pygltflib document.

    Args:
        vertices: List of ((x, y, z), (r, g, b)) tuples
        triangles: List of (a, b, c) vertex index tuples

    Returns:
        Tuple of (document, binary buffer)
    """
    vertices = DEFAULT_VERTICES if vertices is None else vertices
    triangles = DEFAULT_TRIANGLES if triangles is None else triangles

    # Interleave position and color per vertex
    vertex_data = b""
    for position, color in vertices:
        vertex_data += struct.pack("<3f3f", *position, *color)
    vertex_data = align4(vertex_data)

    index_data = b""
    for triangle in triangles:
        index_data += struct.pack("<3I", *triangle)
    index_data = align4(index_data)

    buffer_data = vertex_data + index_data
    index_count = 3 * len(triangles)
    min_bounds, max_bounds = position_bounds([position for position, _ in vertices])

    gltf = GLTF2()
    gltf.asset = Asset(version="2.0", generator="vrm_converter")
    gltf.buffers = [Buffer(byteLength=len(buffer_data))]
    gltf.bufferViews = [
        BufferView(
            buffer=0,
            byteOffset=0,
            byteLength=len(vertex_data),
            byteStride=VERTEX_STRIDE,
            target=ARRAY_BUFFER,
        ),
        BufferView(
            buffer=0,
            byteOffset=len(vertex_data),
            byteLength=len(index_data),
            target=ELEMENT_ARRAY_BUFFER,
        ),
    ]
    gltf.accessors = [
        Accessor(
            bufferView=0,
            byteOffset=0,
            componentType=FLOAT,
            count=len(vertices),
            type=VEC3,
            min=min_bounds,
            max=max_bounds,
        ),
        Accessor(
            bufferView=0,
            byteOffset=12,
            componentType=FLOAT,
            count=len(vertices),
            type=VEC3,
        ),
        Accessor(
            bufferView=1,
            byteOffset=0,
            componentType=UNSIGNED_INT,
            count=index_count,
            type=SCALAR,
        ),
    ]
    gltf.meshes = [
        Mesh(
            primitives=[
                Primitive(
                    attributes=Attributes(POSITION=0, COLOR_0=1),
                    indices=2,
                    mode=TRIANGLES,
                )
            ]
        )
    ]
    gltf.nodes = [Node(mesh=0)]
    gltf.scenes = [Scene(nodes=[0])]
    gltf.scene = 0
    return gltf, buffer_data


def build_default_document(vertices=None, triangles=None) -> SceneGraph:
    """Build the default coloured mesh as a scene graph ready for encoding."""
    gltf, buffer_data = build_default_gltf(vertices, triangles)
    description = json.loads(gltf.to_json())
    return SceneGraph.from_description(description, buffer_data)
