"""Tests for the conversion driver."""
import json
import math
import struct
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conversion_driver import ConversionDriver, DriverState, convert, export_scene
from glb_codec import GlbCodec
from vrm_errors import ConstraintCycleDetected, DriverStateError, MalformedHeader
from vrm_scene import SceneGraph

HALF = math.sqrt(0.5)


def constraint_extension(kind, source, **fields):
    body = {"source": source}
    body.update(fields)
    return {"VRMC_node_constraint": {"specVersion": "1.0", "constraint": {kind: body}}}


def create_test_vrm(nodes, bin_data=b"\x00\x00\x80\x3f"):
    """Create GLB bytes holding the given nodes under one scene."""
    children = set(c for n in nodes for c in n.get("children", []))
    document = {
        "asset": {"version": "2.0"},
        "extensionsUsed": ["VRMC_node_constraint"],
        "scene": 0,
        "scenes": [{"nodes": [i for i in range(len(nodes)) if i not in children]}],
        "nodes": nodes,
        "buffers": [{"byteLength": len(bin_data)}],
    }
    json_data = json.dumps(document).encode("utf-8")
    json_data += b" " * (-len(json_data) % 4)
    bin_padded = bin_data + b"\x00" * (-len(bin_data) % 4)

    data = struct.pack("<II", len(json_data), 0x4E4F534A) + json_data
    data += struct.pack("<II", len(bin_padded), 0x004E4942) + bin_padded
    return b"glTF" + struct.pack("<II", 2, 12 + len(data)) + data


def roll_scenario():
    return create_test_vrm([
        {"name": "source", "rotation": [0, HALF, 0, HALF]},
        {"name": "bystander"},
        {"name": "twist", "extensions": constraint_extension("roll", 0, rollAxis="Y", weight=1.0)},
    ])


def cyclic_vrm():
    return create_test_vrm([
        {"name": "a", "extensions": constraint_extension("rotation", 2)},
        {"name": "b", "extensions": constraint_extension("rotation", 0)},
        {"name": "c", "extensions": constraint_extension("rotation", 1)},
    ])


def test_roll_scenario_end_to_end():
    """Decode, evaluate, encode, then read the baked rotation back."""
    driver = ConversionDriver()
    driver.decode(roll_scenario())
    driver.evaluate()
    output = driver.encode()

    scene = SceneGraph.from_container(GlbCodec().decode(output))
    rotation = scene.nodes[2].rotation
    assert abs(abs(sum(a * b for a, b in zip(rotation, (0.0, HALF, 0.0, HALF)))) - 1.0) < 1e-6
    assert scene.nodes[0].rotation == (0.0, HALF, 0.0, HALF)
    assert scene.nodes[1].rotation == (0.0, 0.0, 0.0, 1.0)
    assert scene.nodes[2].constraint is not None


def test_state_progression():
    driver = ConversionDriver()
    assert driver.state is DriverState.IDLE

    driver.decode(roll_scenario())
    assert driver.state is DriverState.DECODED

    driver.evaluate()
    assert driver.state is DriverState.EVALUATED

    driver.encode()
    assert driver.state is DriverState.ENCODED


def test_encode_before_decode():
    with pytest.raises(DriverStateError, match="Cannot encode in state idle"):
        ConversionDriver().encode()


def test_evaluate_twice():
    driver = ConversionDriver()
    driver.decode(roll_scenario())
    driver.evaluate()
    with pytest.raises(DriverStateError):
        driver.evaluate()


def test_decode_twice():
    driver = ConversionDriver()
    driver.decode(roll_scenario())
    with pytest.raises(DriverStateError):
        driver.decode(roll_scenario())


def test_failed_decode_ends_conversion():
    driver = ConversionDriver()
    with pytest.raises(MalformedHeader):
        driver.decode(b"XXXX" + roll_scenario()[4:])

    assert driver.state is DriverState.FAILED
    with pytest.raises(DriverStateError):
        driver.encode()


def test_cycle_allows_plain_encode():
    """A constraint cycle blocks evaluation but not re-encoding."""
    data = cyclic_vrm()
    driver = ConversionDriver()
    driver.decode(data)

    with pytest.raises(ConstraintCycleDetected) as excinfo:
        driver.evaluate()
    assert excinfo.value.node_ids == {0, 1, 2}
    assert driver.state is DriverState.DECODED

    output = driver.encode()
    scene = SceneGraph.from_container(GlbCodec().decode(output))
    assert len(scene.constraints) == 3


def test_evaluate_on_decode():
    driver = ConversionDriver(evaluate_on_decode=True)
    scene = driver.decode(roll_scenario())

    assert driver.state is DriverState.EVALUATED
    assert scene.nodes[2].rotation != (0.0, 0.0, 0.0, 1.0)


def test_convert_is_deterministic():
    data = roll_scenario()
    first = convert(data, evaluate=True)
    assert convert(data, evaluate=True) == first
    assert convert(first) == first


def test_reevaluating_baked_file_is_stable():
    """Baking an already baked file changes nothing."""
    data = create_test_vrm([
        {"name": "shoulder", "rotation": [0, HALF, 0, HALF], "children": [1]},
        {"name": "upper_arm"},
        {"name": "twist", "rotation": [0, 0, 0.3826834, 0.9238795],
         "extensions": constraint_extension("roll", 1, rollAxis="Y", weight=1.0)},
        {"name": "follow", "extensions": constraint_extension("rotation", 0, weight=0.5)},
    ])

    first = ConversionDriver(evaluate_on_decode=True)
    first.decode(data)
    baked = first.encode()

    second = ConversionDriver(evaluate_on_decode=True)
    scene = second.decode(baked)

    baked_scene = SceneGraph.from_container(GlbCodec().decode(baked))
    for index in (2, 3):
        for a, b in zip(scene.nodes[index].rotation, baked_scene.nodes[index].rotation):
            assert abs(a - b) < 1e-12
    assert abs(abs(sum(a * b for a, b in zip(scene.nodes[2].rotation, (0.0, HALF, 0.0, HALF)))) - 1.0) < 1e-6
    assert second.encode() == baked


def test_baked_file_keeps_rest_rotation():
    baked = convert(roll_scenario(), evaluate=True)
    document = json.loads(GlbCodec().decode(baked).json_data)

    assert document["nodes"][2]["extras"] == {"restRotation": [0.0, 0.0, 0.0, 1.0]}
    assert "extras" not in document["nodes"][0]


def test_convert_without_evaluation_keeps_scene():
    data = roll_scenario()
    codec = GlbCodec()
    original = SceneGraph.from_container(codec.decode(data))
    converted = SceneGraph.from_container(codec.decode(convert(data)))

    assert converted == original


def test_export_scene_evaluates():
    scene = SceneGraph.from_container(GlbCodec().decode(roll_scenario()))
    output = export_scene(scene)

    baked = SceneGraph.from_container(GlbCodec().decode(output))
    assert baked == scene
    assert baked.nodes[2].rotation != (0.0, 0.0, 0.0, 1.0)


def test_load_then_encode():
    scene = SceneGraph.from_container(GlbCodec().decode(roll_scenario()))
    driver = ConversionDriver()
    driver.load(scene)
    output = driver.encode()

    assert output == convert(roll_scenario())
