#!/usr/bin/env python

""" Qn vector correction parameters.

Also contains methods to access that information.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import enum
import logging
from typing import List

from pachyderm import yaml

logger = logging.getLogger(__name__)

# Highest harmonic which the histograms can store. Harmonic ``h`` is tracked with the bit ``1 << h``,
# so this is bounded by the width of the fill masks.
MAX_HARMONIC_NUMBER_SUPPORTED = 15

class QnVectorStatus(enum.Enum):
    """ Status of a single harmonic of a Qn vector.

    The value orders the statuses along the correction sequence. ``undefined`` means that the
    detector didn't provide any entries for the event, so no correction can be applied.
    """
    undefined = -1
    raw = 0
    equalized = 1
    recentered = 2
    aligned = 3
    twisted = 4
    rescaled = 5

    def __str__(self) -> str:
        """ Returns the name of the status. """
        return str(self.name)

    def display_str(self) -> str:
        """ Return a formatted string for display in logs, tables, etc. """
        return self.name.capitalize()

    # Handle YAML serialization
    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)

class CorrectionStep(enum.Enum):
    """ Correction steps, in the order in which they are applied.

    ``raw`` isn't a correction, but it labels the Qn vector built directly from the data vectors.
    """
    raw = 0
    equalization = 1
    recentering = 2
    alignment = 3
    twist = 4
    rescaling = 5

    def __str__(self) -> str:
        """ Returns the name of the step. """
        return str(self.name)

    def display_str(self) -> str:
        """ Return a formatted string for display in logs, tables, etc. """
        return self.name.capitalize()

    @property
    def status(self) -> QnVectorStatus:
        """ Status of a Qn vector harmonic after this step was applied. """
        return QnVectorStatus(self.value)

    @classmethod
    def corrections(cls) -> List["CorrectionStep"]:
        """ The correction steps (that is, all steps except ``raw``), in order. """
        return [step for step in cls if step != cls.raw]

    # Handle YAML serialization
    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)

class NormalizationMethod(enum.Enum):
    """ Normalization of the Qn vector once it has been built from the data vectors. """
    none = 0
    q_over_sqrt_m = 1
    q_over_m = 2
    magnitude = 3

    def __str__(self) -> str:
        """ Returns the name of the method. """
        return str(self.name)

    def display_str(self) -> str:
        """ Return a formatted string for display in logs, tables, etc. """
        labels = {
            "none": "Q",
            "q_over_sqrt_m": "Q/sqrt(M)",
            "q_over_m": "Q/M",
            "magnitude": "Q/|Q|",
        }
        return labels[self.name]

    # Handle YAML serialization
    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)

class EqualizationMethod(enum.Enum):
    """ Channel gain equalization methods. """
    average = 0
    width = 1

    def __str__(self) -> str:
        """ Returns the name of the method. """
        return str(self.name)

    def display_str(self) -> str:
        """ Return a formatted string for display in logs, tables, etc. """
        return f"{self.name.capitalize()} equalization"

    # Handle YAML serialization
    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)

class TwistAndRescaleMethod(enum.Enum):
    """ Source of the calibration parameters for the twist and rescaling steps.

    - ``double_harmonic``: Average Qn vector components at twice the harmonic.
    - ``u2n``: Average of cos(2n phi) and sin(2n phi) of the data vectors.
    - ``correlations``: Correlations between three detectors.
    """
    double_harmonic = 0
    u2n = 1
    correlations = 2

    def __str__(self) -> str:
        """ Returns the name of the method. """
        return str(self.name)

    def display_str(self) -> str:
        """ Return a formatted string for display in logs, tables, etc. """
        return self.name.replace("_", " ").capitalize()

    # Handle YAML serialization
    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)

class ErrorMode(enum.Enum):
    """ Error reported by the profile histograms.

    - ``mean``: Standard error on the mean, spread / sqrt(N).
    - ``spread``: Standard deviation of the filled values.
    """
    mean = 0
    spread = 1

    def __str__(self) -> str:
        """ Returns the name of the mode. """
        return str(self.name)

    # Handle YAML serialization
    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)
