"""Tests for the default document builder."""
import os
import struct
import tempfile
import pytest
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conversion_driver import export_scene
from default_document import VERTEX_STRIDE, build_default_document
from scene_report import position_bounds


def test_default_document_layout():
    scene = build_default_document()

    assert len(scene.nodes) == 1
    assert scene.nodes[0].mesh == 0
    assert len(scene.meshes) == 1
    assert len(scene.accessors) == 3
    assert scene.buffer_views[0]["byteStride"] == VERTEX_STRIDE

    positions, colors, indices = scene.accessors
    assert positions["count"] == 4
    assert positions["min"] == [-0.5, -0.5, 0.0]
    assert positions["max"] == [0.5, 0.5, 1.0]
    assert colors["byteOffset"] == 12
    assert indices["count"] == 6
    assert indices["componentType"] == 5125  # UNSIGNED_INT


def test_default_document_binary():
    scene = build_default_document()

    # 4 vertices * 24 bytes + 6 indices * 4 bytes
    assert len(scene.binary) == 120
    assert scene.buffers[0]["byteLength"] == 120
    assert struct.unpack("<6f", scene.binary[:24]) == (0.0, 0.5, 0.0, 1.0, 0.0, 0.0)
    assert struct.unpack("<6I", scene.binary[96:120]) == (0, 1, 2, 1, 2, 3)


def test_custom_vertices():
    vertices = [
        ((0.0, 0.0, 0.0), (1.0, 1.0, 1.0)),
        ((2.0, 0.0, 0.0), (1.0, 1.0, 1.0)),
        ((0.0, 3.0, 0.0), (1.0, 1.0, 1.0)),
    ]
    scene = build_default_document(vertices=vertices, triangles=[(0, 1, 2)])

    assert scene.accessors[0]["max"] == [2.0, 3.0, 0.0]
    assert scene.accessors[2]["count"] == 3
    assert len(scene.binary) == 3 * 24 + 12


def test_position_bounds_empty():
    assert position_bounds([]) == ([0.0, 0.0, 0.0], [0.0, 0.0, 0.0])


def test_default_document_loads_in_pygltflib():
    """Written file should be readable by another glTF implementation."""
    output = export_scene(build_default_document(), evaluate=False)

    with tempfile.TemporaryDirectory() as tmpdir:
        output_path = os.path.join(tmpdir, "default.glb")
        with open(output_path, "wb") as f:
            f.write(output)

        from pygltflib import GLTF2
        gltf = GLTF2.load(output_path)

        assert len(gltf.meshes) == 1
        assert gltf.meshes[0].primitives[0].indices == 2
        assert gltf.accessors[0].count == 4
        assert len(gltf.binary_blob()) == 120
