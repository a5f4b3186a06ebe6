"""Error types raised while converting VRM/GLB documents.

Every error derives from ``ValueError`` so callers that only care about
"bad input" can keep catching that, and carries the position that caused it
(byte offset, chunk index, JSON path or node ids) plus the process exit code
used by ``vrm_convert``.
"""
from typing import Any, Iterable, Optional

EXIT_CONTAINER_ERROR = 2
EXIT_SCENE_ERROR = 3
EXIT_CONSTRAINT_ERROR = 4


class VrmConversionError(ValueError):
    """Base class for all conversion errors."""

    exit_code = 1

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ContainerError(VrmConversionError):
    """Structural corruption in the binary container."""

    exit_code = EXIT_CONTAINER_ERROR

    def __init__(self, message: str, offset: Optional[int] = None, chunk_index: Optional[int] = None):
        super().__init__(message, offset=offset, chunk_index=chunk_index)
        self.offset = offset
        self.chunk_index = chunk_index


class MalformedHeader(ContainerError):
    """Bad magic or unsupported version."""


class TruncatedInput(ContainerError):
    """Fewer bytes supplied than the header declares."""


class InvalidChunkLength(ContainerError):
    """Chunk length is unaligned or runs past the declared total length."""


class UnexpectedChunkOrder(ContainerError):
    """JSON chunk not first, duplicate BIN chunk or unknown chunk type."""


class InvalidDescription(ContainerError):
    """JSON chunk is not valid UTF-8 JSON."""


class SceneGraphError(VrmConversionError):
    """Structural defect in the scene description."""

    exit_code = EXIT_SCENE_ERROR

    def __init__(self, message: str, path: Optional[str] = None, node_id: Optional[int] = None):
        super().__init__(message, path=path, node_id=node_id)
        self.path = path
        self.node_id = node_id


class MissingRequiredField(SceneGraphError):
    """A structurally required field is absent."""


class InvalidConstraintWeight(SceneGraphError):
    """Constraint weight is not a number in [0, 1]."""

    def __init__(self, message: str, path: Optional[str] = None, node_id: Optional[int] = None, weight: Any = None):
        super().__init__(message, path=path, node_id=node_id)
        self.context["weight"] = weight
        self.weight = weight


class ReferentialIntegrityError(SceneGraphError):
    """A referenced index is out of range or the node tree is not a forest."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        index: Optional[int] = None,
        node_id: Optional[int] = None,
    ):
        super().__init__(message, path=path, node_id=node_id)
        if index is not None:
            self.context["index"] = index
        self.index = index


class ConstraintError(VrmConversionError):
    """Constraint evaluation cannot proceed."""

    exit_code = EXIT_CONSTRAINT_ERROR


class ConstraintCycleDetected(ConstraintError):
    """Constraint and hierarchy edges form a cycle."""

    def __init__(self, node_ids: Iterable[int]):
        self.node_ids = frozenset(node_ids)
        ids = ", ".join(str(i) for i in sorted(self.node_ids))
        super().__init__(f"Constraint cycle between nodes [{ids}]", node_ids=sorted(self.node_ids))


class InvalidConstraintReference(ConstraintError):
    """Constraint source or target does not name another node in the graph."""

    def __init__(self, message: str, node_id: Optional[int] = None, source: Optional[int] = None):
        super().__init__(message, node_id=node_id, source=source)
        self.node_id = node_id
        self.source = source


class DriverStateError(RuntimeError):
    """Conversion driver operation called out of order."""
