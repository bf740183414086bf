#!/usr/bin/env python

""" Toy model of events with anisotropic flow, seen through imperfect detectors.

The particles are generated with an azimuthal distribution ``1 + 2 sum_n v_n cos(n (phi - Psi))``
around a random event plane. The detectors then introduce the effects which the corrections are
designed to remove: channel gain variations, dead channels, acceptance holes and misalignment.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import abc
from dataclasses import dataclass, field
import logging
import numpy as np
import secrets
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

@dataclass
class FlowEvent:
    """ Generated event.

    Attributes:
        centrality: Event centrality in percent.
        vertex_z: Position of the primary vertex along the beam axis.
        event_plane: Symmetry plane of the event.
        phi: Azimuthal angle of each particle.
        eta: Pseudorapidity of each particle.
    """
    centrality: float
    vertex_z: float
    event_plane: float
    phi: np.ndarray
    eta: np.ndarray

    @property
    def multiplicity(self) -> int:
        return len(self.phi)

# Each data vector is (phi, weight, channel_id).
DataVectorValues = Tuple[float, float, int]

class Detector(abc.ABC):
    """ Base detector. Converts the generated particles into data vectors. """
    name: str

    @abc.abstractmethod
    def data_vectors(self, event: FlowEvent, rng: np.random.Generator) -> List[DataVectorValues]:
        ...

    def particle_eta(self, event: FlowEvent, data_vector_index: int) -> Optional[float]:
        """ Pseudorapidity of the particle which created the data vector, if it's a single particle. """
        return None

@dataclass
class TrackingDetector(Detector):
    """ Detector which measures individual particles.

    Attributes:
        name: Name of the detector.
        eta_range: Pseudorapidity acceptance.
        hole: Azimuthal range (min, max) with reduced efficiency. None if there is no hole.
        hole_efficiency: Efficiency within the hole.
    """
    name: str
    eta_range: Tuple[float, float] = (-0.8, 0.8)
    hole: Optional[Tuple[float, float]] = None
    hole_efficiency: float = 0.5
    _accepted: np.ndarray = field(default_factory = lambda: np.array([], dtype = int), repr = False)

    def data_vectors(self, event: FlowEvent, rng: np.random.Generator) -> List[DataVectorValues]:
        accepted = (event.eta > self.eta_range[0]) & (event.eta < self.eta_range[1])
        if self.hole is not None:
            in_hole = (event.phi > self.hole[0]) & (event.phi < self.hole[1])
            lost = rng.uniform(size = event.multiplicity) > self.hole_efficiency
            accepted &= ~(in_hole & lost)
        self._accepted = np.flatnonzero(accepted)
        return [(float(event.phi[i]), 1.0, -1) for i in self._accepted]

    def particle_eta(self, event: FlowEvent, data_vector_index: int) -> Optional[float]:
        return float(event.eta[self._accepted[data_vector_index]])

@dataclass
class ChannelizedDetector(Detector):
    """ Detector segmented into azimuthal channels which measure the deposited multiplicity.

    Attributes:
        name: Name of the detector.
        n_channels: Number of azimuthal channels.
        eta_range: Pseudorapidity acceptance.
        gains: Gain of each channel. Default: 1 for every channel.
        dead_channels: Channels which never register a signal.
        phi_offset: Rotation of the detector with respect to the nominal position.
    """
    name: str
    n_channels: int
    eta_range: Tuple[float, float] = (2.8, 5.1)
    gains: Optional[Sequence[float]] = None
    dead_channels: Sequence[int] = ()
    phi_offset: float = 0.0

    def __post_init__(self) -> None:
        if self.gains is not None and len(self.gains) != self.n_channels:
            raise ValueError(f"Detector {self.name} requires {self.n_channels} gains, but received {len(self.gains)}")

    @property
    def channel_width(self) -> float:
        return 2 * np.pi / self.n_channels

    def channel_phi(self, channel: int) -> float:
        """ Azimuthal angle of the center of the channel, as assumed by the reconstruction. """
        return (channel + 0.5) * self.channel_width

    def data_vectors(self, event: FlowEvent, rng: np.random.Generator) -> List[DataVectorValues]:
        accepted = (event.eta > self.eta_range[0]) & (event.eta < self.eta_range[1])
        # The physical position of the channels is rotated by the offset.
        phi = np.mod(event.phi[accepted] - self.phi_offset, 2 * np.pi)
        channels = np.minimum((phi / self.channel_width).astype(int), self.n_channels - 1)
        counts = np.bincount(channels, minlength = self.n_channels).astype(float)
        if self.gains is not None:
            counts *= np.asarray(self.gains)
        dead = set(self.dead_channels)
        return [
            (self.channel_phi(channel), float(counts[channel]), channel)
            for channel in range(self.n_channels)
            if counts[channel] > 0 and channel not in dead
        ]

def detector_from_config(name: str, config: Mapping[str, Any]) -> Detector:
    """ Create a detector from the configuration.

    Args:
        name: Name of the detector.
        config: Detector configuration. ``type`` selects between ``tracking`` and ``channelized``.
    Returns:
        The detector.
    """
    detector_type = config.get("type", "tracking")
    if detector_type == "tracking":
        hole = config.get("hole")
        return TrackingDetector(
            name = name,
            eta_range = tuple(config.get("eta_range", (-0.8, 0.8))),  # type: ignore
            hole = tuple(hole) if hole is not None else None,  # type: ignore
            hole_efficiency = float(config.get("hole_efficiency", 0.5)),
        )
    if detector_type == "channelized":
        gains = config.get("gains")
        return ChannelizedDetector(
            name = name,
            n_channels = int(config["n_channels"]),
            eta_range = tuple(config.get("eta_range", (2.8, 5.1))),  # type: ignore
            gains = [float(g) for g in gains] if gains is not None else None,
            dead_channels = [int(c) for c in config.get("dead_channels", [])],
            phi_offset = float(config.get("phi_offset", 0.0)),
        )
    raise ValueError(f"Unrecognized detector type {detector_type} for detector {name}")

class FlowEventGenerator:
    """ Generate events with anisotropic flow.

    Args:
        flow_coefficients: Flow coefficient v_n for each harmonic n.
        multiplicity_range: Multiplicity of the most peripheral and most central events.
        centrality_range: Range of the generated centralities.
        vertex_z_range: Range of the generated vertex positions.
        eta_range: Pseudorapidity range of the generated particles.
        random_seed: Random seed. If None, a random seed is selected.

    Attributes:
        random_seed: Random seed used for the generator.
        rng: Random number generator.
    """
    def __init__(self, flow_coefficients: Optional[Mapping[int, float]] = None,
                 multiplicity_range: Tuple[int, int] = (100, 1000),
                 centrality_range: Tuple[float, float] = (0, 80),
                 vertex_z_range: Tuple[float, float] = (-10, 10),
                 eta_range: Tuple[float, float] = (-1.0, 5.5),
                 random_seed: Optional[int] = None):
        self.flow_coefficients: Dict[int, float] = dict(flow_coefficients) if flow_coefficients is not None else {2: 0.1}
        if sum(abs(v) for v in self.flow_coefficients.values()) >= 0.5:
            raise ValueError(f"Flow coefficients {self.flow_coefficients} would lead to a negative distribution.")
        self.multiplicity_range = multiplicity_range
        self.centrality_range = centrality_range
        self.vertex_z_range = vertex_z_range
        self.eta_range = eta_range
        self.random_seed = random_seed if random_seed is not None else secrets.randbelow(1000000)
        self.rng = np.random.default_rng(self.random_seed)

    def reset(self) -> None:
        """ Restart the generator from its random seed, so the same events are generated again. """
        self.rng = np.random.default_rng(self.random_seed)

    def _sample_phi(self, n: int, event_plane: float) -> np.ndarray:
        """ Sample azimuthal angles with accept-reject. """
        harmonics = np.array(list(self.flow_coefficients.keys()))
        coefficients = np.array(list(self.flow_coefficients.values()))
        maximum = 1 + 2 * np.sum(np.abs(coefficients))
        accepted: List[np.ndarray] = []
        n_accepted = 0
        while n_accepted < n:
            phi = self.rng.uniform(0, 2 * np.pi, size = 2 * (n - n_accepted))
            density = 1 + 2 * np.sum(
                coefficients[:, np.newaxis] * np.cos(harmonics[:, np.newaxis] * (phi - event_plane)), axis = 0
            )
            keep = phi[self.rng.uniform(0, maximum, size = len(phi)) < density]
            accepted.append(keep)
            n_accepted += len(keep)
        return np.concatenate(accepted)[:n]

    def generate(self) -> FlowEvent:
        centrality = self.rng.uniform(*self.centrality_range)
        # Multiplicity decreases linearly from central to peripheral events.
        low, high = self.multiplicity_range
        fraction = (centrality - self.centrality_range[0]) / (self.centrality_range[1] - self.centrality_range[0])
        multiplicity = max(1, int(self.rng.poisson(high - (high - low) * fraction)))
        event_plane = self.rng.uniform(0, 2 * np.pi)
        return FlowEvent(
            centrality = centrality,
            vertex_z = self.rng.uniform(*self.vertex_z_range),
            event_plane = event_plane,
            phi = self._sample_phi(multiplicity, event_plane),
            eta = self.rng.uniform(*self.eta_range, size = multiplicity),
        )

    def __call__(self, n_events: int) -> Iterator[FlowEvent]:
        """ Generate events.

        Args:
            n_events: Number of events to generate.
        Returns:
            The generated events.
        """
        for _ in range(n_events):
            yield self.generate()

def detectors_from_config(config: Mapping[str, Mapping[str, Any]]) -> Dict[str, Detector]:
    return {name: detector_from_config(name, detector_config) for name, detector_config in config.items()}

def iterate_data_vectors(detectors: Iterable[Detector], event: FlowEvent,
                         rng: np.random.Generator) -> Iterator[Tuple[Detector, int, DataVectorValues]]:
    """ Iterate over the data vectors of each detector for an event.

    Args:
        detectors: Detectors which observe the event.
        event: Generated event.
        rng: Random number generator for the detector response.
    Returns:
        (detector, data vector index, (phi, weight, channel_id)) for each data vector.
    """
    for detector in detectors:
        for index, values in enumerate(detector.data_vectors(event, rng)):
            yield detector, index, values
