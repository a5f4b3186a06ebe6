"""Evaluation of rotation, aim and roll node constraints."""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from constraint_resolver import ConstraintResolver
from vrm_math import (
    AXES,
    EPSILON,
    IDENTITY,
    Quat,
    Vec3,
    length3,
    mask_axes,
    quat_from_to,
    quat_inverse,
    quat_multiply,
    quat_rotate,
    quat_slerp,
    sub3,
    twist_around,
)
from vrm_scene import AIM_AXES, Constraint, ConstraintKind, Node, SceneGraph

logger = logging.getLogger(__name__)


@dataclass
class WorldTransform:
    """Node transform relative to the scene root.

    Scale is combined per component, which is exact for positions and for
    rotations under uniformly scaled parents.
    """

    translation: Vec3 = (0.0, 0.0, 0.0)
    rotation: Quat = IDENTITY
    scale: Vec3 = (1.0, 1.0, 1.0)

    def compose(self, node: Node) -> "WorldTransform":
        """World transform of a child node given this parent transform."""
        scaled = tuple(s * t for s, t in zip(self.scale, node.translation))
        offset = quat_rotate(self.rotation, scaled)
        return WorldTransform(
            translation=tuple(p + o for p, o in zip(self.translation, offset)),
            rotation=quat_multiply(self.rotation, node.rotation),
            scale=tuple(a * b for a, b in zip(self.scale, node.scale)),
        )


ROOT = WorldTransform()


class ConstraintEvaluator:
    """Applies node constraints to a scene graph in place.

    Only the rotation of constrained nodes is written; sources and
    unconstrained nodes are left untouched. Every constraint starts from the
    target's rest rotation (``Node.rest``), which is recorded the first time
    the node is evaluated, so evaluating the same scene again gives the same
    rotations.
    """

    def __init__(self, scene: SceneGraph):
        self.scene = scene
        self._world: Dict[int, WorldTransform] = {}

    def evaluate(self, order: Optional[List[int]] = None) -> Dict[int, Quat]:
        """Evaluate every constraint in dependency order.

        Args:
            order: Node order from ConstraintResolver; resolved when omitted

        Returns:
            New local rotation of each constrained node, keyed by node index

        Raises:
            ConstraintCycleDetected: If constraints depend on each other in a loop
            InvalidConstraintReference: If a constraint names a missing node
        """
        if order is None:
            order = ConstraintResolver(self.scene).resolve()

        parents = self.scene.parents()
        self._world = {}
        results: Dict[int, Quat] = {}

        for index in order:
            node = self.scene.nodes[index]
            parent_index = parents[index]
            parent = self._world[parent_index] if parent_index is not None else ROOT

            constraint = node.constraint
            if constraint is not None:
                if constraint.weight <= 0.0:
                    logger.debug("Node %d: weight 0, skipped", index)
                else:
                    node.rest_rotation = node.rest
                    node.rotation = self._apply(node, constraint, parent)
                    results[index] = node.rotation
                    logger.debug(
                        "Node %d: %s from node %d -> %s",
                        index,
                        constraint.kind.value,
                        constraint.source,
                        node.rotation,
                    )

            self._world[index] = parent.compose(node)

        return results

    def world_transforms(self) -> Dict[int, WorldTransform]:
        """World transforms from the last evaluation, keyed by node index."""
        return dict(self._world)

    def _apply(self, node: Node, constraint: Constraint, parent: WorldTransform) -> Quat:
        if constraint.kind is ConstraintKind.ROTATION:
            return self._rotation(node, constraint)
        if constraint.kind is ConstraintKind.AIM:
            return self._aim(node, constraint, parent)
        return self._roll(node, constraint)

    def _rotation(self, node: Node, constraint: Constraint) -> Quat:
        """Blend towards the source's world rotation, minus any frozen axes."""
        target = self._world[constraint.source].rotation
        if constraint.freeze_axes:
            target = mask_axes(target, constraint.freeze_axes)
        return quat_slerp(node.rest, target, constraint.weight)

    def _aim(self, node: Node, constraint: Constraint, parent: WorldTransform) -> Quat:
        """Turn the node so its aim axis points at the source's world position."""
        position = parent.compose(node).translation
        direction = sub3(self._world[constraint.source].translation, position)
        if length3(direction) < EPSILON:
            logger.warning(
                "Node %d: aim source %d at the same position, constraint skipped",
                node.index,
                constraint.source,
            )
            return node.rest

        current = quat_multiply(parent.rotation, node.rest)
        axis = quat_rotate(current, AIM_AXES[constraint.aim_axis])
        aimed = quat_multiply(quat_from_to(axis, direction), current)
        local = quat_multiply(quat_inverse(parent.rotation), aimed)
        return quat_slerp(node.rest, local, constraint.weight)

    def _roll(self, node: Node, constraint: Constraint) -> Quat:
        """Blend towards the twist of the source's world rotation around the roll axis."""
        twist = twist_around(self._world[constraint.source].rotation, AXES[constraint.roll_axis])
        return quat_slerp(node.rest, twist, constraint.weight)
