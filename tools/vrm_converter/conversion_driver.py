"""Decode, optionally evaluate constraints, and re-encode a VRM/GLB file."""
import logging
from enum import Enum
from typing import Dict, Optional

from constraint_evaluator import ConstraintEvaluator
from constraint_resolver import ConstraintResolver
from glb_codec import GlbCodec
from vrm_errors import ConstraintError, DriverStateError
from vrm_math import Quat
from vrm_scene import SceneGraph

logger = logging.getLogger(__name__)


class DriverState(Enum):
    IDLE = "idle"
    DECODED = "decoded"
    EVALUATED = "evaluated"
    ENCODED = "encoded"
    FAILED = "failed"


class ConversionDriver:
    """Runs one conversion: Idle -> Decoded -> (Evaluated) -> Encoded.

    Each instance handles a single document. Calling a step out of order, or
    again after it ran, raises DriverStateError. A failed decode ends the
    conversion; a failed evaluation leaves the document decoded so it can
    still be encoded without evaluated constraints.
    """

    def __init__(self, evaluate_on_decode: bool = False):
        """Initialize driver.

        Args:
            evaluate_on_decode: Evaluate constraints right after decoding
        """
        self.evaluate_on_decode = evaluate_on_decode
        self.codec = GlbCodec()
        self.state = DriverState.IDLE
        self.scene: Optional[SceneGraph] = None
        self.output: Optional[bytes] = None

    def _expect(self, operation: str, *states: DriverState):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise DriverStateError(f"Cannot {operation} in state {self.state.value} (needs {allowed})")

    def decode(self, data: bytes) -> SceneGraph:
        """Decode GLB bytes into a scene graph (import path)."""
        self._expect("decode", DriverState.IDLE)
        try:
            container = self.codec.decode(data)
            self.scene = SceneGraph.from_container(container)
        except Exception:
            self.state = DriverState.FAILED
            raise
        self.state = DriverState.DECODED
        logger.info("Decoded %d bytes: %d nodes", len(data), len(self.scene.nodes))

        if self.evaluate_on_decode:
            self.evaluate()
        return self.scene

    def load(self, scene: SceneGraph) -> SceneGraph:
        """Start from an in-memory scene graph (export path)."""
        self._expect("load", DriverState.IDLE)
        self.scene = scene
        self.state = DriverState.DECODED
        return scene

    def evaluate(self) -> Dict[int, Quat]:
        """Evaluate node constraints in place.

        Raises:
            ConstraintError: On cycles or dangling references; the document
                stays decoded and unmodified
        """
        self._expect("evaluate", DriverState.DECODED)
        try:
            order = ConstraintResolver(self.scene).resolve()
        except ConstraintError as e:
            logger.error("Constraint evaluation failed: %s", e)
            raise
        results = ConstraintEvaluator(self.scene).evaluate(order)
        self.state = DriverState.EVALUATED
        logger.info("Evaluated %d constraints", len(results))
        return results

    def encode(self) -> bytes:
        """Encode the current scene graph to GLB bytes."""
        self._expect("encode", DriverState.DECODED, DriverState.EVALUATED)
        self.output = self.codec.encode(self.scene.to_container())
        self.state = DriverState.ENCODED
        logger.info("Encoded %d bytes", len(self.output))
        return self.output


def convert(data: bytes, evaluate: bool = False) -> bytes:
    """Round-trip GLB bytes, optionally baking node constraints."""
    driver = ConversionDriver(evaluate_on_decode=evaluate)
    driver.decode(data)
    return driver.encode()


def export_scene(scene: SceneGraph, evaluate: bool = True) -> bytes:
    """Encode an in-memory scene graph, optionally baking node constraints."""
    driver = ConversionDriver()
    driver.load(scene)
    if evaluate:
        driver.evaluate()
    return driver.encode()
