#!/usr/bin/env python

""" Qn vectors and the data vectors from which they are built.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

from dataclasses import dataclass
import logging
import numpy as np
from typing import Callable, List, Sequence

from qn_corrections.base import params

logger = logging.getLogger(__name__)

@dataclass
class DataVector:
    """ Single input to a Qn vector, such as a track or a detector channel.

    Attributes:
        phi: Azimuthal angle.
        weight: Raw weight (for example, the channel multiplicity).
        channel_id: Detector channel. -1 if the detector isn't channelized.
        average_equalized_weight: Weight after average gain equalization.
        width_equalized_weight: Weight after width gain equalization.
    """
    phi: float
    weight: float = 1.0
    channel_id: int = -1
    average_equalized_weight: float = 0.0
    width_equalized_weight: float = 0.0

    def equalized_weight(self, method: params.EqualizationMethod) -> float:
        """ Weight after the selected gain equalization. """
        if method == params.EqualizationMethod.width:
            return self.width_equalized_weight
        return self.average_equalized_weight

WeightSelector = Callable[[DataVector], float]

def raw_weight(data_vector: DataVector) -> float:
    """ Select the raw weight of the data vector. """
    return data_vector.weight

def equalized_weight_selector(method: params.EqualizationMethod) -> WeightSelector:
    """ Create a selector of the weight after the given gain equalization. """
    def selector(data_vector: DataVector) -> float:
        return data_vector.equalized_weight(method)
    return selector

class QnVector:
    """ Multi-harmonic flow vector.

    Harmonics are addressed by their number, from 1 up to the maximum harmonic.

    Args:
        max_harmonic: Highest harmonic stored in the vector.
        name: Name of the vector, for logging.

    Attributes:
        name: Name of the vector.
        max_harmonic: Highest harmonic stored in the vector.
        n: Number of data vectors used to build the vector.
        multiplicity: Sum of the weights of the data vectors.
        normalization: Normalization which was applied.
        _qx: X component for each harmonic. Index 0 is unused.
        _qy: Y component for each harmonic. Index 0 is unused.
        _status: Status of each harmonic. Index 0 is unused.
    """
    def __init__(self, max_harmonic: int, name: str = ""):
        if max_harmonic < 1:
            raise ValueError(f"Qn vector {name} requires a maximum harmonic of at least 1. Requested: {max_harmonic}")
        self.name = name
        self.max_harmonic = max_harmonic
        self._qx = np.zeros(max_harmonic + 1)
        self._qy = np.zeros(max_harmonic + 1)
        self._status = [params.QnVectorStatus.undefined] * (max_harmonic + 1)
        self.n = 0
        self.multiplicity = 0.0
        self.normalization = params.NormalizationMethod.none

    def reset(self) -> None:
        """ Reset the vector for a new event. """
        self._qx[:] = 0
        self._qy[:] = 0
        self._status = [params.QnVectorStatus.undefined] * (self.max_harmonic + 1)
        self.n = 0
        self.multiplicity = 0.0
        self.normalization = params.NormalizationMethod.none

    def set_from(self, other: "QnVector") -> None:
        """ Copy the contents of another vector into this one, without reallocation. """
        if other.max_harmonic != self.max_harmonic:
            raise ValueError(
                f"Cannot copy Qn vector {other.name} with max harmonic {other.max_harmonic}"
                f" into {self.name} with max harmonic {self.max_harmonic}"
            )
        self._qx[:] = other._qx
        self._qy[:] = other._qy
        self._status = list(other._status)
        self.n = other.n
        self.multiplicity = other.multiplicity
        self.normalization = other.normalization

    def _validate_harmonic(self, harmonic: int) -> None:
        if harmonic < 1 or harmonic > self.max_harmonic:
            raise ValueError(f"Harmonic {harmonic} is out of range [1, {self.max_harmonic}] for Qn vector {self.name}")

    def qx(self, harmonic: int) -> float:
        self._validate_harmonic(harmonic)
        return float(self._qx[harmonic])

    def qy(self, harmonic: int) -> float:
        self._validate_harmonic(harmonic)
        return float(self._qy[harmonic])

    def set_qx(self, harmonic: int, value: float) -> None:
        self._validate_harmonic(harmonic)
        self._qx[harmonic] = value

    def set_qy(self, harmonic: int, value: float) -> None:
        self._validate_harmonic(harmonic)
        self._qy[harmonic] = value

    def status(self, harmonic: int) -> params.QnVectorStatus:
        self._validate_harmonic(harmonic)
        return self._status[harmonic]

    def check_status(self, harmonic: int, status: params.QnVectorStatus) -> bool:
        """ Check whether the harmonic has the given status. """
        return self.status(harmonic) == status

    def is_defined(self, harmonic: int) -> bool:
        return self.status(harmonic) != params.QnVectorStatus.undefined

    def set_status(self, harmonic: int, status: params.QnVectorStatus) -> None:
        """ Set the status of a harmonic.

        The status can only advance along the correction sequence. It can always be reset to undefined.

        Raises:
            ValueError: If the status would go backwards.
        """
        current = self.status(harmonic)
        if status != params.QnVectorStatus.undefined and current != params.QnVectorStatus.undefined \
                and status.value < current.value:
            raise ValueError(f"Cannot change the status of harmonic {harmonic} of {self.name} from {current} back to {status}")
        self._status[harmonic] = status

    def set_all_statuses(self, status: params.QnVectorStatus, harmonics: Sequence[int]) -> None:
        for h in harmonics:
            self.set_status(h, status)

    def harmonics(self) -> List[int]:
        return list(range(1, self.max_harmonic + 1))

    def add_data_vector(self, phi: float, weight: float) -> None:
        """ Add the contribution of a single data vector to every harmonic. """
        harmonics = np.arange(1, self.max_harmonic + 1)
        self._qx[1:] += weight * np.cos(harmonics * phi)
        self._qy[1:] += weight * np.sin(harmonics * phi)
        self.n += 1
        self.multiplicity += weight

    def fill_from_data_vectors(self, data_vectors: Sequence[DataVector], weight_selector: WeightSelector = raw_weight) -> None:
        """ Build the vector from a set of data vectors.

        The components are accumulated on top of the existing contents, so the vector should usually
        be reset first.

        Args:
            data_vectors: Data vectors of the event.
            weight_selector: Function returning the weight to use for each data vector.
        Returns:
            None.
        """
        if len(data_vectors) == 0:
            return
        phi = np.array([dv.phi for dv in data_vectors])
        weights = np.array([weight_selector(dv) for dv in data_vectors])
        harmonics = np.arange(1, self.max_harmonic + 1)
        # Shape: (n_harmonics, n_data_vectors)
        angles = np.outer(harmonics, phi)
        self._qx[1:] += np.sum(weights * np.cos(angles), axis = 1)
        self._qy[1:] += np.sum(weights * np.sin(angles), axis = 1)
        self.n += len(data_vectors)
        self.multiplicity += float(np.sum(weights))

    def normalize(self, method: params.NormalizationMethod) -> None:
        """ Normalize the vector.

        Vectors without any multiplicity are left untouched, as are harmonics with vanishing magnitude
        for the ``magnitude`` normalization.

        Args:
            method: Normalization method.
        Returns:
            None.
        """
        self.normalization = method
        if method == params.NormalizationMethod.none or self.multiplicity == 0:
            return
        if method == params.NormalizationMethod.q_over_sqrt_m:
            scale = np.sqrt(np.abs(self.multiplicity))
            self._qx[1:] /= scale
            self._qy[1:] /= scale
        elif method == params.NormalizationMethod.q_over_m:
            self._qx[1:] /= self.multiplicity
            self._qy[1:] /= self.multiplicity
        elif method == params.NormalizationMethod.magnitude:
            magnitude = np.sqrt(self._qx[1:] ** 2 + self._qy[1:] ** 2)
            self._qx[1:] = np.divide(self._qx[1:], magnitude, out = np.zeros_like(magnitude), where = magnitude != 0)
            self._qy[1:] = np.divide(self._qy[1:], magnitude, out = np.zeros_like(magnitude), where = magnitude != 0)

    def event_plane(self, harmonic: int) -> float:
        """ Event plane angle of the given harmonic, in [-pi/n, pi/n]. """
        return float(np.arctan2(self.qy(harmonic), self.qx(harmonic)) / harmonic)

    def __repr__(self) -> str:
        components = ", ".join(
            f"h{h}: ({self._qx[h]:.4g}, {self._qy[h]:.4g}, {self._status[h]})" for h in self.harmonics()
        )
        return f"QnVector(name = {self.name}, n = {self.n}, multiplicity = {self.multiplicity:.4g}, {components})"
