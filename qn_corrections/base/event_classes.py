#!/usr/bin/env python

""" Event class binning of the calibration histograms.

An event class is defined by the values of a set of event variables (centrality, vertex z, etc).
Each variable is mapped onto an axis with explicit bin edges. The variables are identified by their
index in the event variable vector which is filled by the user for each event.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

from dataclasses import dataclass
import logging
import numpy as np
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from pachyderm import generic_class
from pachyderm import yaml

logger = logging.getLogger(__name__)

# Maximum number of event class variables which can be used to bin a histogram.
MAX_DIMENSIONS = 10

def piecewise_uniform_bin_edges(lower_edge: float, segments: Sequence[Tuple[float, int]]) -> np.ndarray:
    """ Create bin edges from segments of uniform binning.

    Each segment is specified by its upper edge and the number of bins in that segment. The segment
    starts at the upper edge of the previous segment (or the lower edge for the first segment).

    Note:
        The edges are built by repeatedly adding the bin width of the segment, so the computed edge at
        the end of a segment can differ from the requested segment edge by floating point rounding.
        Choose widths which are exactly representable if exact edges are required.

    Args:
        lower_edge: Lower edge of the first bin.
        segments: (upper edge, number of bins) for each segment.
    Returns:
        The bin edges.
    """
    edges = [float(lower_edge)]
    segment_lower_edge = float(lower_edge)
    for upper_edge, n_bins in segments:
        if n_bins < 1:
            raise ValueError(f"Segment ending at {upper_edge} must contain at least one bin. Requested: {n_bins}")
        width = (upper_edge - segment_lower_edge) / n_bins
        for _ in range(n_bins):
            edges.append(edges[-1] + width)
        segment_lower_edge = upper_edge

    return np.array(edges)

@dataclass(frozen = True)
class PiecewiseBinning:
    """ Binning composed of segments of uniform bins.

    Attributes:
        lower_edge: Lower edge of the first bin.
        segments: (upper edge, number of bins) for each segment.
    """
    lower_edge: float
    segments: Sequence[Tuple[float, int]]

    @property
    def bin_edges(self) -> np.ndarray:
        return piecewise_uniform_bin_edges(lower_edge = self.lower_edge, segments = self.segments)

    @classmethod
    def from_yaml(cls, constructor: yaml.Constructor, data: yaml.ruamel.yaml.nodes.MappingNode) -> "PiecewiseBinning":
        """ Decode YAML representer.

        Expected block is of the form:

        .. code-block:: yaml

            bins: !PiecewiseBinning
                lower_edge: 0
                segments: [[10, 2], [80, 7]]

        which yields the edges ``[0, 5, 10, 20, ..., 80]``.
        """
        arguments = {
            constructor.construct_object(key_node): constructor.construct_object(value_node, deep = True)
            for key_node, value_node in data.value
        }
        segments = [(float(upper_edge), int(n_bins)) for upper_edge, n_bins in arguments["segments"]]
        return cls(lower_edge = float(arguments["lower_edge"]), segments = segments)

@dataclass(frozen = True, eq = False)
class EventClassAxis:
    """ Single event class axis.

    Attributes:
        variable_id: Index of the variable in the event variable vector.
        bin_edges: Bin edges. Must be strictly increasing.
        label: Label of the axis. Used as the axis title of the histograms.
    """
    variable_id: int
    bin_edges: np.ndarray
    label: str = ""

    def __post_init__(self) -> None:
        edges = np.array(self.bin_edges, dtype = np.float64)
        if edges.ndim != 1 or len(edges) < 2:
            raise ValueError(f"Axis \"{self.label}\" requires at least two bin edges. Provided: {self.bin_edges}")
        if not np.all(np.diff(edges) > 0):
            raise ValueError(f"Bin edges of axis \"{self.label}\" must be strictly increasing. Provided: {edges}")
        # Frozen, so we need to go through object to store the converted edges.
        object.__setattr__(self, "bin_edges", edges)

    @property
    def n_bins(self) -> int:
        return len(self.bin_edges) - 1

    @property
    def min(self) -> float:
        return float(self.bin_edges[0])

    @property
    def max(self) -> float:
        return float(self.bin_edges[-1])

    def find_bin(self, value: float) -> int:
        """ Find the bin (0 indexed) which contains the value.

        Bins include their lower edge and exclude their upper edge.

        Args:
            value: Value to be located.
        Returns:
            The bin index, or -1 if the value is outside of the axis range.
        """
        index = int(np.searchsorted(self.bin_edges, value, side = "right")) - 1
        if index < 0 or index >= self.n_bins:
            return -1
        return index

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return (
            self.variable_id == other.variable_id and self.label == other.label
            and np.array_equal(self.bin_edges, other.bin_edges)
        )

class EventClassAxes(generic_class.EqualityMixin):
    """ Set of event class axes binning the calibration histograms.

    The axes need to be set individually after construction, in the same way as they will be used
    by the histograms.

    Args:
        dimension: Number of axes.
        name: Name of the set of axes, for logging.

    Attributes:
        name: Name of the set of axes.
        _axes: The axes. An axis is ``None`` until it has been set.
    """
    def __init__(self, dimension: int, name: str = ""):
        if dimension < 1 or dimension > MAX_DIMENSIONS:
            raise ValueError(f"Event class axes must have between 1 and {MAX_DIMENSIONS} dimensions. Requested: {dimension}")
        self.name = name
        self._axes: List[Optional[EventClassAxis]] = [None] * dimension

    @classmethod
    def from_axes(cls, axes: Sequence[EventClassAxis], name: str = "") -> "EventClassAxes":
        """ Create the event class axes from existing axes. """
        event_class_axes = cls(dimension = len(axes), name = name)
        for i, axis in enumerate(axes):
            event_class_axes._axes[i] = axis
        return event_class_axes

    @property
    def dimension(self) -> int:
        return len(self._axes)

    def _validate_axis_index(self, axis_index: int) -> None:
        if axis_index < 0 or axis_index >= self.dimension:
            raise ValueError(f"Axis index {axis_index} is out of range for {self.dimension} dimensional axes {self.name}")

    def set_axis(self, axis_index: int, variable_id: int, bin_edges: Sequence[float], label: str = "") -> None:
        """ Set an axis with explicit bin edges.

        Args:
            axis_index: Index of the axis to set.
            variable_id: Index of the variable in the event variable vector.
            bin_edges: Bin edges of the axis.
            label: Label of the axis.
        Returns:
            None.
        """
        self._validate_axis_index(axis_index)
        self._axes[axis_index] = EventClassAxis(variable_id = variable_id, bin_edges = np.array(bin_edges), label = label)

    def set_axis_from_segments(self, axis_index: int, variable_id: int, lower_edge: float,
                               segments: Sequence[Tuple[float, int]], label: str = "") -> None:
        """ Set an axis built from segments of uniform binning.

        See ``piecewise_uniform_bin_edges(...)`` for the definition of the segments.
        """
        self.set_axis(
            axis_index = axis_index, variable_id = variable_id,
            bin_edges = piecewise_uniform_bin_edges(lower_edge = lower_edge, segments = segments),
            label = label,
        )

    def axis(self, axis_index: int) -> EventClassAxis:
        """ Retrieve an axis, which must have been set. """
        self._validate_axis_index(axis_index)
        axis = self._axes[axis_index]
        if axis is None:
            raise ValueError(f"Axis {axis_index} of the event class axes {self.name} has not been set.")
        return axis

    def variable(self, axis_index: int) -> int:
        """ Index of the variable associated with an axis. """
        return self.axis(axis_index).variable_id

    def __iter__(self) -> Iterator[EventClassAxis]:
        for i in range(self.dimension):
            yield self.axis(i)

    @property
    def bin_edges(self) -> List[np.ndarray]:
        return [axis.bin_edges for axis in self]

    @property
    def labels(self) -> List[str]:
        return [axis.label for axis in self]

    def values(self, variables: Sequence[float]) -> List[float]:
        """ Extract the axes coordinates from the event variables.

        Args:
            variables: Event variable vector.
        Returns:
            Value of the variable associated with each axis.
        """
        return [variables[axis.variable_id] for axis in self]

    def sub_axes(self, axis_index: int) -> "EventClassAxes":
        """ One dimensional event class axes containing only the selected axis. """
        axis = self.axis(axis_index)
        return EventClassAxes.from_axes([axis], name = f"{self.name}_{axis_index}")

def _resolve_variable(variable: Union[int, str], variable_ids: Mapping[str, int]) -> int:
    if isinstance(variable, str):
        try:
            return variable_ids[variable]
        except KeyError as e:
            raise KeyError(variable, f"Variable \"{variable}\" is not defined. Available: {list(variable_ids)}") from e
    return int(variable)

def axes_from_config(entries: Sequence[Mapping[str, Any]], variable_ids: Mapping[str, int], name: str = "") -> EventClassAxes:
    """ Create event class axes from the configuration.

    Each entry is of the form:

    .. code-block:: yaml

        - variable: "centrality"
          label: "Centrality (%)"
          bins: [0, 5, 10, 20, 40, 60, 80]

    where ``bins`` can alternatively be a ``!PiecewiseBinning``.

    Args:
        entries: Axes configuration.
        variable_ids: Map from variable name to index in the event variable vector.
        name: Name of the event class axes.
    Returns:
        The event class axes.
    """
    event_class_axes = EventClassAxes(dimension = len(entries), name = name)
    for i, entry in enumerate(entries):
        bins = entry["bins"]
        if isinstance(bins, PiecewiseBinning):
            bins = bins.bin_edges
        event_class_axes.set_axis(
            axis_index = i,
            variable_id = _resolve_variable(entry["variable"], variable_ids),
            bin_edges = bins,
            label = entry.get("label", ""),
        )
    return event_class_axes
