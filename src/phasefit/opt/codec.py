#########################################################################################
##
##                            PARAMETER STRUCTURE CODEC
##                                 (opt/codec.py)
##
##        Converts between the caller's parameter representation (flat sequence,
##        array, or nested mapping of scalars / sequences / arrays) and the flat
##        float vector every other part of the engine works with.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from ..errors import ShapeError


__all__ = [
    "Skeleton",
    "ParameterCodec",
    "capture_skeleton",
    "flatten",
    "unflatten",
]


# SKELETON ==============================================================================

@dataclass(frozen=True)
class Skeleton:
    """Shape / name template of a structured parameter value.

    Captured once from the caller's initial value and reused for every later
    re-expansion, so the flat index order never depends on the vector being
    converted.

    Attributes
    ----------
    kind : str
        One of ``"scalar"``, ``"array"``, ``"sequence"``, ``"mapping"``.
    size : int
        Number of scalars below this node.
    shape : tuple
        Array shape (``kind == "array"`` only).
    keys : tuple
        Mapping keys in flattening order (``kind == "mapping"`` only).
    children : tuple[Skeleton, ...]
        Child nodes for sequences and mappings.
    container : type, optional
        Concrete container type to rebuild (``list``, ``tuple``, ``dict`` ...).
    """

    kind: str
    size: int
    shape: tuple = ()
    keys: tuple = ()
    children: tuple = ()
    container: type | None = None


def capture_skeleton(structured: Any) -> Skeleton:
    """Capture the :class:`Skeleton` of *structured*."""
    if isinstance(structured, Mapping):
        keys = tuple(structured.keys())
        children = tuple(capture_skeleton(structured[k]) for k in keys)
        return Skeleton(
            kind="mapping",
            size=sum(c.size for c in children),
            keys=keys,
            children=children,
            container=type(structured),
        )

    if isinstance(structured, np.ndarray):
        if structured.dtype.kind not in "biuf" and structured.dtype != object:
            raise TypeError(f"Unsupported array dtype for parameters: {structured.dtype}")
        return Skeleton(kind="array", size=int(structured.size), shape=structured.shape)

    if isinstance(structured, (list, tuple)):
        children = tuple(capture_skeleton(v) for v in structured)
        return Skeleton(
            kind="sequence",
            size=sum(c.size for c in children),
            children=children,
            container=type(structured),
        )

    if structured is None or np.ndim(structured) == 0:
        if isinstance(structured, (str, bytes)):
            raise TypeError(f"Parameter values must be numeric, got {structured!r}")
        return Skeleton(kind="scalar", size=1)

    raise TypeError(f"Unsupported parameter container: {type(structured).__name__}")


# FLATTEN / UNFLATTEN ===================================================================

def _as_float(value) -> float:
    """Scalar to float, missing values (None / NaN) become NaN."""
    if value is None:
        return np.nan
    return float(value)


def _flatten_into(obj, node: Skeleton, out: list, path: str) -> None:
    where = path or "<root>"

    if node.kind == "scalar":
        if isinstance(obj, (Mapping, list, tuple)) or np.ndim(obj) != 0:
            raise ShapeError(f"Expected a scalar at '{where}', got {type(obj).__name__}")
        out.append(_as_float(obj))

    elif node.kind == "array":
        arr = np.asarray(obj, dtype=float)
        if arr.shape != node.shape:
            raise ShapeError(
                f"Expected array of shape {node.shape} at '{where}', got {arr.shape}"
            )
        out.extend(arr.reshape(-1).tolist())

    elif node.kind == "sequence":
        if isinstance(obj, (Mapping, str)) or not hasattr(obj, "__len__"):
            raise ShapeError(f"Expected a sequence at '{where}', got {type(obj).__name__}")
        if len(obj) != len(node.children):
            raise ShapeError(
                f"Expected {len(node.children)} values at '{where}', got {len(obj)}"
            )
        for i, (value, child) in enumerate(zip(obj, node.children)):
            _flatten_into(value, child, out, _join(path, str(i)))

    elif node.kind == "mapping":
        if not isinstance(obj, Mapping):
            raise ShapeError(f"Expected a mapping at '{where}', got {type(obj).__name__}")
        if set(obj.keys()) != set(node.keys):
            missing = [k for k in node.keys if k not in obj]
            extra = [k for k in obj if k not in node.keys]
            raise ShapeError(
                f"Mapping keys at '{where}' do not match: missing={missing}, extra={extra}"
            )
        for key, child in zip(node.keys, node.children):
            _flatten_into(obj[key], child, out, _join(path, str(key)))

    else:
        raise ValueError(f"Unknown skeleton kind '{node.kind}'")


def _rebuild(vector: np.ndarray, node: Skeleton, start: int):
    """Rebuild the structure below *node* from ``vector[start:]``.

    Returns the rebuilt value and the index just past the consumed slice.
    """
    if node.kind == "scalar":
        return float(vector[start]), start + 1

    if node.kind == "array":
        stop = start + node.size
        return vector[start:stop].reshape(node.shape).copy(), stop

    if node.kind == "sequence":
        values = []
        for child in node.children:
            value, start = _rebuild(vector, child, start)
            values.append(value)
        return node.container(values), start

    values = {}
    for key, child in zip(node.keys, node.children):
        values[key], start = _rebuild(vector, child, start)
    try:
        return node.container(values), start
    except TypeError:
        return values, start


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _names(node: Skeleton, path: str, out: list) -> None:
    if node.kind == "scalar":
        out.append(path or "0")
    elif node.kind == "array":
        for idx in np.ndindex(*node.shape):
            out.append(_join(path, ".".join(str(i) for i in idx)))
    elif node.kind == "sequence":
        for i, child in enumerate(node.children):
            _names(child, _join(path, str(i)), out)
    else:
        for key, child in zip(node.keys, node.children):
            _names(child, _join(path, str(key)), out)


def flatten(structured: Any, skeleton: Skeleton | None = None) -> np.ndarray:
    """Flatten *structured* into a float vector.

    Missing entries (``None`` / NaN) are kept as NaN.

    Parameters
    ----------
    structured : object
        Flat sequence, array, or nested mapping.
    skeleton : Skeleton, optional
        Template to validate against; captured from *structured* when omitted.

    Raises
    ------
    ShapeError
        If *structured* does not match *skeleton*.
    """
    if skeleton is None:
        skeleton = capture_skeleton(structured)
    out: list = []
    _flatten_into(structured, skeleton, out, "")
    return np.asarray(out, dtype=float)


def unflatten(vector, skeleton: Skeleton):
    """Re-expand a flat *vector* into the structure described by *skeleton*.

    Raises
    ------
    ShapeError
        If ``len(vector)`` differs from the skeleton's flattened length.
    """
    vec = np.asarray(vector, dtype=float).reshape(-1)
    if vec.size != skeleton.size:
        raise ShapeError(f"Expected vector of length {skeleton.size}, got {vec.size}")
    value, _ = _rebuild(vec, skeleton, 0)
    return value


# CODEC =================================================================================

class ParameterCodec:
    """Fixed bidirectional mapping between a structured parameter value and a
    flat vector with a stable index order.

    Parameters
    ----------
    par : object
        Initial parameter value in the caller's representation. Its structure
        becomes the codec's :class:`Skeleton`.

    Example
    -------
    .. code-block:: python

        codec = ParameterCodec({"alpha": 0.5, "gamma": [1.0, 2.0]})
        codec.names              # ['alpha', 'gamma.0', 'gamma.1']
        x = codec.flatten({"alpha": 0.1, "gamma": [3.0, 4.0]})
        codec.unflatten(x)       # {'alpha': 0.1, 'gamma': [3.0, 4.0]}
    """

    def __init__(self, par: Any):
        self.skeleton = capture_skeleton(par)
        self.size = self.skeleton.size

        names: list[str] = []
        _names(self.skeleton, "", names)
        self.names = names


    @property
    def layout(self) -> dict[str, int]:
        """Dotted-name to flat-index mapping."""
        return {name: i for i, name in enumerate(self.names)}


    def flatten(self, structured: Any) -> np.ndarray:
        """Flatten a value with the codec's structure."""
        return flatten(structured, self.skeleton)


    def unflatten(self, vector) -> Any:
        """Re-expand a flat vector into the caller's structure."""
        return unflatten(vector, self.skeleton)


    def align(self, value: Any, default: float, name: str) -> np.ndarray:
        """Bring a per-parameter quantity (bounds, phases, active flags) to the
        codec's flat order.

        ``None`` fills every entry with *default*; a scalar is broadcast; a
        value with the same structure as the parameters is flattened with the
        skeleton; any other sequence must already have the flat length.
        Missing entries inside the value take *default* as well.
        """
        if value is None:
            return np.full(self.size, default, dtype=float)

        if np.ndim(value) == 0 and not isinstance(value, Mapping):
            return np.full(self.size, _as_float(value), dtype=float)

        if isinstance(value, Mapping):
            try:
                out = self.flatten(value)
            except ShapeError as exc:
                raise ShapeError(f"'{name}' does not match the parameter structure: {exc}") from exc
        else:
            out = flatten(value)
            if out.size != self.size:
                raise ShapeError(
                    f"'{name}' has length {out.size}, expected {self.size} "
                    f"to match the parameters"
                )

        out[np.isnan(out)] = default
        return out


    def __len__(self) -> int:
        return self.size


    def __repr__(self) -> str:
        return f"ParameterCodec(kind={self.skeleton.kind!r}, size={self.size})"
