#!/usr/bin/env python

""" Calibration histograms and profiles.

The calibration information is accumulated in multi-dimensional histograms which are binned in
event classes. The profiles wrap these histograms, storing the sum and sum of squares of the filled
values in the value histograms and the number of entries in a separate entries histogram. For the
multi-component profiles, a single entries histogram is shared between all of the components, so
the entries are only incremented once all of the components for an event have been filled. This is
tracked with bit masks, with one bit per harmonic (``1 << h``) or per correlation component.

Histograms are either created (to be filled during this pass over the data) or attached from an
existing histogram list (to read calibration parameters from a previous pass).

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import abc
import copy
from dataclasses import dataclass
import enum
import hist
import logging
import numpy as np
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from qn_corrections.base import params
from qn_corrections.base.event_classes import EventClassAxes

logger = logging.getLogger(__name__)

# Bit which tracks harmonic ``h`` in the fill masks. Harmonic 0 isn't supported.
HARMONIC_NUMBER_MASK = [0] + [1 << h for h in range(1, params.MAX_HARMONIC_NUMBER_SUPPORTED + 1)]
# Title of the extra axis of the channelized profiles.
CHANNEL_AXIS_TITLE = "Channel number"

class FatalHistogramError(RuntimeError):
    """ Misuse of a histogram which indicates a programming error. """
    ...

class FillOrderError(FatalHistogramError):
    """ A component was filled twice before the entries of the event were recorded. """
    ...

class HarmonicNotAllocatedError(FatalHistogramError):
    """ A harmonic which wasn't allocated in the histogram was accessed. """
    ...

class Component(enum.Enum):
    """ Components stored in the multi-component profiles. The value is the histogram name suffix. """
    x = "X"
    y = "Y"
    xx = "XX"
    xy = "XY"
    yx = "YX"
    yy = "YY"

    def __str__(self) -> str:
        return str(self.value)

# Bits which track the correlation components in the fill masks.
CORRELATION_COMPONENT_MASK = {
    Component.xx: 0x01,
    Component.xy: 0x02,
    Component.yx: 0x04,
    Component.yy: 0x08,
}
CORRELATION_COMPONENTS_FULL_MASK = 0x0F

@dataclass
class BinnedHistogram:
    """ Multi-dimensional histogram of weighted fills, backed by ``hist.Hist``.

    Each bin stores the sum of the filled values and the sum of their squares (``Weight`` storage).
    Bins are addressed for reading by a single global index, determined from the per-axis bin indices
    in row-major order. A bin index of -1 corresponds to values outside of the axes ranges. Such values
    are kept in the flow bins and counted in the entries, but can't be read back.

    Attributes:
        name: Name of the histogram. Used to find it in a histogram list.
        title: Title of the histogram.
        h: Underlying histogram.
        entries: Number of fills.
    """
    name: str
    title: str
    h: hist.Hist
    entries: int = 0

    @classmethod
    def create(cls, name: str, title: str, bin_edges: Sequence[np.ndarray], axis_titles: Sequence[str]) -> "BinnedHistogram":
        """ Create an empty histogram with the given binning. """
        h = hist.Hist.new
        for i, (edges, axis_title) in enumerate(zip(bin_edges, axis_titles)):
            h = h.Variable(np.array(edges, dtype = np.float64), name = f"axis{i}", label = axis_title, flow = True)
        return cls(name = name, title = title, h = h.Weight())

    @property
    def bin_edges(self) -> List[np.ndarray]:
        return [np.asarray(axis.edges) for axis in self.h.axes]

    @property
    def axis_titles(self) -> List[str]:
        return [axis.label for axis in self.h.axes]

    @property
    def shape(self) -> Tuple[int, ...]:
        """ Number of bins of each axis. """
        return tuple(axis.size for axis in self.h.axes)

    @property
    def values(self) -> np.ndarray:
        """ Sum of the filled values in each bin, without the flow bins. """
        return self.h.values()

    @property
    def sum_of_squares(self) -> np.ndarray:
        """ Sum of the squares of the filled values in each bin, without the flow bins. """
        return self.h.variances()

    def find_bin(self, coordinates: Sequence[float]) -> int:
        """ Find the global bin index of the given coordinates.

        Args:
            coordinates: Value for each axis.
        Returns:
            Global bin index, or -1 if any coordinate is outside of its axis.
        """
        if len(coordinates) != len(self.h.axes):
            raise ValueError(
                f"Histogram {self.name} has {len(self.h.axes)} axes, but {len(coordinates)} coordinates were provided."
            )
        indices = []
        for value, axis in zip(coordinates, self.h.axes):
            # Underflow is -1 and overflow is the axis size.
            index = axis.index(value)
            if index < 0 or index >= axis.size:
                return -1
            indices.append(index)
        return int(np.ravel_multi_index(tuple(indices), self.shape))

    def fill(self, coordinates: Sequence[float], value: float = 1.0) -> None:
        """ Fill a value at the given coordinates. """
        if len(coordinates) != len(self.h.axes):
            raise ValueError(
                f"Histogram {self.name} has {len(self.h.axes)} axes, but {len(coordinates)} coordinates were provided."
            )
        self.entries += 1
        self.h.fill(*coordinates, weight = value)

    def _bin_indices(self, bin: int) -> Tuple[int, ...]:
        return tuple(int(i) for i in np.unravel_index(bin, self.shape))

    def get_bin_content(self, bin: int) -> float:
        if bin < 0:
            return 0.0
        return float(self.values[self._bin_indices(bin)])

    def get_bin_sum_of_squares(self, bin: int) -> float:
        if bin < 0:
            return 0.0
        return float(self.sum_of_squares[self._bin_indices(bin)])


class HistogramList:
    """ Named collection of histograms.

    Nested lists are stored in the same way as histograms, so calibration histograms can be grouped
    (for example, by run label).

    Args:
        name: Name of the list.
    """
    def __init__(self, name: str):
        self.name = name
        self._objects: Dict[str, Any] = {}

    def add(self, obj: Any) -> None:
        """ Add a named object to the list. Names must be unique. """
        if obj.name in self._objects:
            raise ValueError(f"Object named \"{obj.name}\" is already stored in the list {self.name}")
        self._objects[obj.name] = obj

    def find(self, name: str) -> Optional[Any]:
        """ Find an object by name.

        Args:
            name: Name of the object.
        Returns:
            The object, or None if it isn't in the list.
        """
        return self._objects.get(name, None)

    def names(self) -> List[str]:
        return list(self._objects)

    def copy(self, name: Optional[str] = None) -> "HistogramList":
        """ Deep copy of the list and its contents, optionally with a new name. """
        new_list = copy.deepcopy(self)
        if name is not None:
            new_list.name = name
        return new_list

    def __contains__(self, name: str) -> bool:
        return name in self._objects

    def __iter__(self) -> Iterator[Any]:
        return iter(self._objects.values())

    def __len__(self) -> int:
        return len(self._objects)

class HistogramBase(abc.ABC):
    """ Base class for the calibration profiles.

    Args:
        name: Base name of the histograms.
        title: Base title of the histograms.
        event_class_axes: Event class binning of the histograms.
        error_mode: Error which is reported by the profile.
        validation_threshold: Bins with this number of entries or fewer are considered empty.

    Attributes:
        name: Base name of the histograms.
        title: Base title of the histograms.
        event_class_axes: Event class binning of the histograms.
        error_mode: Error which is reported by the profile.
        validation_threshold: Bins with this number of entries or fewer are considered empty.
        _entries: Number of entries in each bin.
    """
    def __init__(self, name: str, title: str, event_class_axes: EventClassAxes,
                 error_mode: params.ErrorMode = params.ErrorMode.mean, validation_threshold: int = 1):
        self.name = name
        self.title = title
        self.event_class_axes = event_class_axes
        self.error_mode = error_mode
        self.validation_threshold = validation_threshold
        self._entries: Optional[BinnedHistogram] = None

    @property
    def entries_histogram(self) -> BinnedHistogram:
        if self._entries is None:
            raise RuntimeError(f"Histograms of {self.name} have been neither created nor attached.")
        return self._entries

    def _extra_axes(self) -> List[Tuple[np.ndarray, str]]:
        """ Axes beyond the event class axes. """
        return []

    def _expected_shape(self) -> Tuple[int, ...]:
        shape = [axis.n_bins for axis in self.event_class_axes]
        shape.extend(len(edges) - 1 for edges, _ in self._extra_axes())
        return tuple(shape)

    def _new_histogram(self, name: str, title: str) -> BinnedHistogram:
        extra_axes = self._extra_axes()
        return BinnedHistogram.create(
            name = name, title = title,
            bin_edges = self.event_class_axes.bin_edges + [edges for edges, _ in extra_axes],
            axis_titles = self.event_class_axes.labels + [axis_title for _, axis_title in extra_axes],
        )

    def _find_histogram(self, histogram_list: HistogramList, name: str) -> Optional[BinnedHistogram]:
        """ Find a histogram in the list, validating that its shape matches the expected binning. """
        histogram = histogram_list.find(name)
        if histogram is None:
            return None
        if not isinstance(histogram, BinnedHistogram) or histogram.shape != self._expected_shape():
            logger.warning(
                f"Histogram {name} is incompatible with the binning of {self.name}."
                f" Expected shape: {self._expected_shape()}, found: {getattr(histogram, 'shape', None)}"
            )
            return None
        return histogram

    def _coordinates(self, variables: Sequence[float]) -> List[float]:
        return self.event_class_axes.values(variables)

    def get_bin(self, variables: Sequence[float]) -> int:
        """ Global bin index for the event class of the current event.

        Args:
            variables: Event variable vector.
        Returns:
            The bin index, or -1 if the event is outside of the axes ranges.
        """
        return self.entries_histogram.find_bin(self._coordinates(variables))

    def _bin_entries(self, bin: int) -> float:
        return self.entries_histogram.get_bin_content(bin)

    def _is_validated(self, bin: int) -> bool:
        return bin >= 0 and self._bin_entries(bin) > self.validation_threshold

    def _bin_content(self, values: BinnedHistogram, bin: int) -> float:
        if not self._is_validated(bin):
            return 0.0
        return values.get_bin_content(bin) / self._bin_entries(bin)

    def _bin_error(self, values: BinnedHistogram, bin: int) -> float:
        if not self._is_validated(bin):
            return 0.0
        n_entries = self._bin_entries(bin)
        average = values.get_bin_content(bin) / n_entries
        spread = np.sqrt(np.abs(values.get_bin_sum_of_squares(bin) / n_entries - average ** 2))
        if self.error_mode == params.ErrorMode.mean:
            return float(spread / np.sqrt(n_entries))
        return float(spread)

    @abc.abstractmethod
    def create_histograms(self, histogram_list: HistogramList, *args: Any, **kwargs: Any) -> None:
        """ Create the histograms and store them in the list. """
        ...

    @abc.abstractmethod
    def attach_histograms(self, histogram_list: HistogramList, *args: Any, **kwargs: Any) -> bool:
        """ Attach to existing histograms in the list.

        Returns:
            True if all of the required histograms were found with the expected binning.
        """
        ...

class Profile(HistogramBase):
    """ Profile of a single value binned in event classes. """
    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._values: Optional[BinnedHistogram] = None

    def create_histograms(self, histogram_list: HistogramList) -> None:
        self._values = self._new_histogram(self.name, self.title)
        self._entries = self._new_histogram(f"{self.name}_entries", f"{self.title} entries")
        histogram_list.add(self._values)
        histogram_list.add(self._entries)

    def attach_histograms(self, histogram_list: HistogramList) -> bool:
        values = self._find_histogram(histogram_list, self.name)
        entries = self._find_histogram(histogram_list, f"{self.name}_entries")
        if values is None or entries is None:
            return False
        self._values = values
        self._entries = entries
        return True

    @property
    def values_histogram(self) -> BinnedHistogram:
        if self._values is None:
            raise RuntimeError(f"Histograms of {self.name} have been neither created nor attached.")
        return self._values

    def fill(self, variables: Sequence[float], value: float) -> None:
        coordinates = self._coordinates(variables)
        self.values_histogram.fill(coordinates, value)
        self.entries_histogram.fill(coordinates)

    def get_bin_content(self, bin: int) -> float:
        return self._bin_content(self.values_histogram, bin)

    def get_bin_error(self, bin: int) -> float:
        return self._bin_error(self.values_histogram, bin)

class ChannelizedProfile(Profile):
    """ Profile with an additional axis for the detector channels.

    Only the used channels are allocated bins on the channel axis. The external channel numbers are
    mapped onto consecutive internal channel numbers, in order.

    Args:
        n_channels: Number of channels of the detector.

    Attributes:
        n_channels: Number of channels of the detector.
        _used_channels: Whether each channel is used.
        _channel_groups: Group of each channel.
        _channel_map: Internal channel number of each channel. -1 for unused channels.
    """
    def __init__(self, name: str, title: str, event_class_axes: EventClassAxes, n_channels: int, **kwargs: Any):
        super().__init__(name, title, event_class_axes, **kwargs)
        if n_channels < 1:
            raise ValueError(f"Channelized profile {name} requires at least one channel. Requested: {n_channels}")
        self.n_channels = n_channels
        self._used_channels = np.ones(n_channels, dtype = bool)
        self._channel_groups = np.zeros(n_channels, dtype = int)
        self._channel_map = np.arange(n_channels)

    def _configure_channels(self, used_channels: Optional[Sequence[bool]], channel_groups: Optional[Sequence[int]]) -> None:
        if used_channels is not None:
            if len(used_channels) != self.n_channels:
                raise ValueError(f"Expected {self.n_channels} used channel flags for {self.name}, but received {len(used_channels)}")
            self._used_channels = np.array(used_channels, dtype = bool)
        if channel_groups is not None:
            if len(channel_groups) != self.n_channels:
                raise ValueError(f"Expected {self.n_channels} channel groups for {self.name}, but received {len(channel_groups)}")
            self._channel_groups = np.array(channel_groups, dtype = int)
        self._channel_map = np.full(self.n_channels, -1, dtype = int)
        self._channel_map[self._used_channels] = np.arange(np.count_nonzero(self._used_channels))

    @property
    def n_used_channels(self) -> int:
        return int(np.count_nonzero(self._used_channels))

    def _extra_axes(self) -> List[Tuple[np.ndarray, str]]:
        # One bin per used channel, centered on the internal channel number.
        return [(np.arange(self.n_used_channels + 1) - 0.5, CHANNEL_AXIS_TITLE)]

    def create_histograms(self, histogram_list: HistogramList,
                          used_channels: Optional[Sequence[bool]] = None,
                          channel_groups: Optional[Sequence[int]] = None) -> None:
        """ Create the histograms.

        Args:
            histogram_list: List where the histograms will be stored.
            used_channels: Whether each channel is used. Default: all channels are used.
            channel_groups: Group of each channel. Default: all channels are in group 0.
        Returns:
            None.
        """
        self._configure_channels(used_channels = used_channels, channel_groups = channel_groups)
        super().create_histograms(histogram_list)

    def attach_histograms(self, histogram_list: HistogramList,
                          used_channels: Optional[Sequence[bool]] = None,
                          channel_groups: Optional[Sequence[int]] = None) -> bool:
        """ Attach the histograms, validating that the channel axis matches the used channels. """
        self._configure_channels(used_channels = used_channels, channel_groups = channel_groups)
        return super().attach_histograms(histogram_list)

    def is_channel_used(self, channel: int) -> bool:
        return 0 <= channel < self.n_channels and bool(self._used_channels[channel])

    def channel_group(self, channel: int) -> int:
        return int(self._channel_groups[channel])

    def get_bin(self, variables: Sequence[float], channel: int = 0) -> int:  # type: ignore
        """ Global bin index for the event class and channel.

        Args:
            variables: Event variable vector.
            channel: External channel number.
        Returns:
            The bin index, or -1 if the event is outside of the axes ranges or the channel is unused.
        """
        if self._channel_map[self._checked_channel(channel)] < 0:
            return -1
        return self.entries_histogram.find_bin(self._channel_coordinates(variables, channel))

    def _checked_channel(self, channel: int) -> int:
        if channel < 0 or channel >= self.n_channels:
            raise ValueError(f"Channel {channel} is out of range for the {self.n_channels} channels of {self.name}")
        return channel

    def _channel_coordinates(self, variables: Sequence[float], channel: int) -> List[float]:
        # Unused channels map to -1, which lands in the underflow of the channel axis.
        return self._coordinates(variables) + [float(self._channel_map[self._checked_channel(channel)])]

    def fill(self, variables: Sequence[float], channel: int, value: float) -> None:  # type: ignore
        coordinates = self._channel_coordinates(variables, channel)
        self.values_histogram.fill(coordinates, value)
        self.entries_histogram.fill(coordinates)

class _HarmonicComponentsProfile(HistogramBase):
    """ Profile of several components per harmonic, sharing a single entries histogram.

    The entries are incremented once every component of every allocated harmonic has been filled.

    Attributes:
        _values: Value histograms indexed by component and then by harmonic. ``None`` if not allocated.
        _fill_masks: Harmonics filled for each component since the last entries update.
        _full_filled_mask: Mask with all allocated harmonics.
    """
    _components: Tuple[Component, ...] = ()
    _entries_suffix = ""
    # Whether attaching requires the histograms to contain entries.
    _requires_entries = False

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._values = self._empty_slots()
        self._fill_masks = {c: 0 for c in self._components}
        self._full_filled_mask = 0

    def _empty_slots(self) -> Dict[Component, List[Optional[BinnedHistogram]]]:
        return {c: [None] * (params.MAX_HARMONIC_NUMBER_SUPPORTED + 1) for c in self._components}

    def _histogram_name(self, component: Component, harmonic: int) -> str:
        return f"{self.name}{component}_h{harmonic}"

    @property
    def harmonics(self) -> List[int]:
        """ Allocated harmonics. """
        first = self._values[self._components[0]]
        return [h for h in range(1, params.MAX_HARMONIC_NUMBER_SUPPORTED + 1) if first[h] is not None]

    def create_histograms(self, histogram_list: HistogramList, n_harmonics: int,
                          harmonic_map: Optional[Sequence[int]] = None) -> None:
        """ Create the histograms.

        Args:
            histogram_list: List where the histograms will be stored.
            n_harmonics: Number of harmonics to allocate.
            harmonic_map: Harmonic numbers to allocate. Default: 1, ..., n_harmonics.
        Returns:
            None.
        """
        if harmonic_map is None:
            harmonics = list(range(1, n_harmonics + 1))
        else:
            if len(harmonic_map) != n_harmonics:
                raise ValueError(f"Harmonic map {harmonic_map} doesn't contain {n_harmonics} harmonics for {self.name}")
            harmonics = list(harmonic_map)
        if not harmonics:
            raise ValueError(f"No harmonics requested for {self.name}")
        if min(harmonics) < 1 or max(harmonics) > params.MAX_HARMONIC_NUMBER_SUPPORTED:
            raise ValueError(
                f"Requested harmonics {harmonics} for {self.name}, but only harmonics 1-{params.MAX_HARMONIC_NUMBER_SUPPORTED} are supported."
            )

        self._entries = self._new_histogram(f"{self.name}{self._entries_suffix}", f"{self.title} entries")
        histogram_list.add(self._entries)
        self._values = self._empty_slots()
        self._full_filled_mask = 0
        for h in harmonics:
            for component in self._components:
                histogram = self._new_histogram(self._histogram_name(component, h), f"{self.title} {component} component h{h}")
                self._values[component][h] = histogram
                histogram_list.add(histogram)
            self._full_filled_mask |= HARMONIC_NUMBER_MASK[h]
        self._fill_masks = {c: 0 for c in self._components}

    def attach_histograms(self, histogram_list: HistogramList, harmonics: Optional[Sequence[int]] = None) -> bool:
        """ Attach to existing histograms.

        All of the harmonics which are available for every component are attached.

        Args:
            histogram_list: List containing the histograms.
            harmonics: Harmonics which must be available. Default: at least one harmonic.
        Returns:
            True if the histograms were attached.
        """
        entries = self._find_histogram(histogram_list, f"{self.name}{self._entries_suffix}")
        if entries is None:
            return False
        if self._requires_entries and entries.entries == 0:
            logger.warning(f"Histogram {entries.name} doesn't contain any entries.")
            return False

        values = self._empty_slots()
        full_filled_mask = 0
        for h in range(1, params.MAX_HARMONIC_NUMBER_SUPPORTED + 1):
            found = {c: self._find_histogram(histogram_list, self._histogram_name(c, h)) for c in self._components}
            if all(histogram is not None for histogram in found.values()):
                for c, histogram in found.items():
                    values[c][h] = histogram
                full_filled_mask |= HARMONIC_NUMBER_MASK[h]
        if full_filled_mask == 0:
            return False
        if harmonics is not None:
            missing = [h for h in harmonics if values[self._components[0]][h] is None]
            if missing:
                logger.warning(f"Harmonics {missing} are not available for {self.name}")
                return False

        self._entries = entries
        self._values = values
        self._full_filled_mask = full_filled_mask
        self._fill_masks = {c: 0 for c in self._components}
        return True

    def _harmonic_histogram(self, component: Component, harmonic: int) -> BinnedHistogram:
        histogram = None
        if 0 < harmonic <= params.MAX_HARMONIC_NUMBER_SUPPORTED:
            histogram = self._values[component][harmonic]
        if histogram is None:
            raise HarmonicNotAllocatedError(f"Accessing non allocated harmonic {harmonic} in histogram {self.name}")
        return histogram

    def fill_component(self, component: Component, harmonic: int, variables: Sequence[float], value: float) -> None:
        """ Fill a component of a harmonic.

        Args:
            component: Component to fill.
            harmonic: Harmonic to fill.
            variables: Event variable vector.
            value: Value to fill.
        Returns:
            None.
        Raises:
            HarmonicNotAllocatedError: If the harmonic wasn't allocated.
            FillOrderError: If the component was already filled since the last entries update.
        """
        histogram = self._harmonic_histogram(component, harmonic)
        mask = HARMONIC_NUMBER_MASK[harmonic]
        if self._fill_masks[component] & mask:
            raise FillOrderError(
                f"Filling twice the {component} component of harmonic {harmonic} before entries update in histogram {self.name}"
            )
        coordinates = self._coordinates(variables)
        histogram.fill(coordinates, value)
        self._fill_masks[component] |= mask

        if all(m == self._full_filled_mask for m in self._fill_masks.values()):
            self.entries_histogram.fill(coordinates)
            self._fill_masks = {c: 0 for c in self._components}

    def get_component_bin_content(self, component: Component, harmonic: int, bin: int) -> float:
        return self._bin_content(self._harmonic_histogram(component, harmonic), bin)

    def get_component_bin_error(self, component: Component, harmonic: int, bin: int) -> float:
        return self._bin_error(self._harmonic_histogram(component, harmonic), bin)

class ComponentsProfile(_HarmonicComponentsProfile):
    """ Profile of the X and Y components of several harmonics.

    Used for the averages of the Qn vector components, for example.
    """
    _components = (Component.x, Component.y)
    _entries_suffix = "XY_entries"

    def fill_x(self, harmonic: int, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.x, harmonic, variables, value)

    def fill_y(self, harmonic: int, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.y, harmonic, variables, value)

    def get_x_bin_content(self, harmonic: int, bin: int) -> float:
        return self.get_component_bin_content(Component.x, harmonic, bin)

    def get_y_bin_content(self, harmonic: int, bin: int) -> float:
        return self.get_component_bin_content(Component.y, harmonic, bin)

    def get_x_bin_error(self, harmonic: int, bin: int) -> float:
        return self.get_component_bin_error(Component.x, harmonic, bin)

    def get_y_bin_error(self, harmonic: int, bin: int) -> float:
        return self.get_component_bin_error(Component.y, harmonic, bin)

class CorrelationComponentsHarmonicProfile(_HarmonicComponentsProfile):
    """ Profile of the XX, XY, YX and YY correlation components of several harmonics. """
    _components = (Component.xx, Component.xy, Component.yx, Component.yy)
    _entries_suffix = "XXXYYXYY_entries"
    _requires_entries = True

    def fill_xx(self, harmonic: int, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.xx, harmonic, variables, value)

    def fill_xy(self, harmonic: int, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.xy, harmonic, variables, value)

    def fill_yx(self, harmonic: int, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.yx, harmonic, variables, value)

    def fill_yy(self, harmonic: int, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.yy, harmonic, variables, value)

class CorrelationComponentsProfile(HistogramBase):
    """ Profile of the XX, XY, YX and YY correlation components, without harmonic structure.

    The entries are incremented once all four components have been filled.
    """
    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._values: Dict[Component, Optional[BinnedHistogram]] = {c: None for c in CORRELATION_COMPONENT_MASK}
        self._fill_mask = 0

    def create_histograms(self, histogram_list: HistogramList) -> None:
        self._entries = self._new_histogram(f"{self.name}XXXYYXYY_entries", f"{self.title} entries")
        histogram_list.add(self._entries)
        for component in CORRELATION_COMPONENT_MASK:
            histogram = self._new_histogram(f"{self.name}{component}", f"{self.title} {component} component")
            self._values[component] = histogram
            histogram_list.add(histogram)
        self._fill_mask = 0

    def attach_histograms(self, histogram_list: HistogramList) -> bool:
        entries = self._find_histogram(histogram_list, f"{self.name}XXXYYXYY_entries")
        if entries is None:
            return False
        if entries.entries == 0:
            logger.warning(f"Histogram {entries.name} doesn't contain any entries.")
            return False
        values = {c: self._find_histogram(histogram_list, f"{self.name}{c}") for c in CORRELATION_COMPONENT_MASK}
        if any(histogram is None for histogram in values.values()):
            return False
        self._entries = entries
        self._values = values
        self._fill_mask = 0
        return True

    def _component_histogram(self, component: Component) -> BinnedHistogram:
        histogram = self._values[component]
        if histogram is None:
            raise RuntimeError(f"Histograms of {self.name} have been neither created nor attached.")
        return histogram

    def fill_component(self, component: Component, variables: Sequence[float], value: float) -> None:
        """ Fill a correlation component.

        Raises:
            FillOrderError: If the component was already filled since the last entries update.
        """
        mask = CORRELATION_COMPONENT_MASK[component]
        if self._fill_mask & mask:
            raise FillOrderError(f"Filling twice the {component} component before entries update in histogram {self.name}")
        coordinates = self._coordinates(variables)
        self._component_histogram(component).fill(coordinates, value)
        self._fill_mask |= mask

        if self._fill_mask == CORRELATION_COMPONENTS_FULL_MASK:
            self.entries_histogram.fill(coordinates)
            self._fill_mask = 0

    def fill_xx(self, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.xx, variables, value)

    def fill_xy(self, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.xy, variables, value)

    def fill_yx(self, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.yx, variables, value)

    def fill_yy(self, variables: Sequence[float], value: float) -> None:
        self.fill_component(Component.yy, variables, value)

    def get_component_bin_content(self, component: Component, bin: int) -> float:
        return self._bin_content(self._component_histogram(component), bin)

    def get_component_bin_error(self, component: Component, bin: int) -> float:
        return self._bin_error(self._component_histogram(component), bin)
