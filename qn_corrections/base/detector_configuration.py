#!/usr/bin/env python

""" Detector configurations for building and correcting Qn vectors.

A detector configuration describes how the Qn vector of a detector (or of a subset of a detector,
such as one side of it) is built and which corrections are applied to it. Several configurations
can share the same detector, in which case the same data vectors are offered to each of them.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
from typing import Dict, Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple

from pachyderm import generic_class

from qn_corrections.base import cuts as cuts_module
from qn_corrections.base import params
from qn_corrections.base.event_classes import EventClassAxes

logger = logging.getLogger(__name__)

class DetectorConfiguration(generic_class.EqualityMixin):
    """ Configuration of the Qn vector of a detector.

    The requested corrections are fixed by the configuration. Whether each of them is applied and
    whether its calibration histograms are filled is decided when the framework is initialized,
    depending on the calibration histograms which are available.

    Args:
        name: Name of the configuration. Must be unique.
        detector: Key of the detector which provides the data vectors.
        recentering_axes: Event class binning of the Qn vector calibrations. It is also the default
            for the alignment and twist and rescaling binning.
        min_harmonic: Lowest harmonic to correct.
        max_harmonic: Highest harmonic to correct.
        normalization: Normalization of the Qn vector.
        corrections: Requested correction steps.
        equalization_axes: Event class binning of the channel equalization. Default: recentering axes.
        alignment_axes: Event class binning of the alignment. Default: recentering axes.
        twist_and_rescale_axes: Event class binning of the twist and rescaling. Default: recentering axes.
        n_channels: Number of channels of the detector. 0 if the detector isn't channelized.
        used_channels: Whether each channel is used. Default: all channels are used.
        channel_groups: Group of each channel. If provided, group equalization is also performed.
        equalization_method: Channel gain equalization method.
        recentering_width_equalization: If True, the Qn vector components are also divided by their
            width during recentering.
        alignment_harmonic: Harmonic used to determine the alignment rotation.
        alignment_reference: Name of the configuration to which this configuration is aligned.
        twist_and_rescale_method: Source of the twist and rescaling calibration parameters.
        correlation_partners: Names of the two other configurations used for the three detector
            correlations twist and rescaling method.
        cuts: Cuts which data vectors must pass.
        min_entries_to_validate: Calibration bins with this number of entries or fewer are ignored.

    Attributes:
        detector_id: Index of the detector in the registry. Set when registered.
        global_index: Index of the configuration among all configurations. Set when registered.
        local_index: Index of the configuration among those of its detector. Set when registered.
    """
    def __init__(self, name: str, detector: Hashable, recentering_axes: EventClassAxes,
                 min_harmonic: int = 1, max_harmonic: int = 2,
                 normalization: params.NormalizationMethod = params.NormalizationMethod.q_over_m,
                 corrections: Iterable[params.CorrectionStep] = (),
                 equalization_axes: Optional[EventClassAxes] = None,
                 alignment_axes: Optional[EventClassAxes] = None,
                 twist_and_rescale_axes: Optional[EventClassAxes] = None,
                 n_channels: int = 0,
                 used_channels: Optional[Sequence[bool]] = None,
                 channel_groups: Optional[Sequence[int]] = None,
                 equalization_method: params.EqualizationMethod = params.EqualizationMethod.average,
                 recentering_width_equalization: bool = False,
                 alignment_harmonic: int = 2,
                 alignment_reference: Optional[str] = None,
                 twist_and_rescale_method: params.TwistAndRescaleMethod = params.TwistAndRescaleMethod.double_harmonic,
                 correlation_partners: Optional[Tuple[str, str]] = None,
                 cuts: Optional[cuts_module.Cuts] = None,
                 min_entries_to_validate: int = 1):
        self.name = name
        self.detector = detector
        self.min_harmonic = min_harmonic
        self.max_harmonic = max_harmonic
        self.normalization = normalization
        self.requested_corrections = frozenset(corrections)
        if params.CorrectionStep.raw in self.requested_corrections:
            raise ValueError(f"The raw step of {name} is always performed and cannot be requested as a correction.")

        # Binning
        self.recentering_axes = recentering_axes
        self.equalization_axes = equalization_axes if equalization_axes is not None else recentering_axes
        self.alignment_axes = alignment_axes if alignment_axes is not None else recentering_axes
        self.twist_and_rescale_axes = twist_and_rescale_axes if twist_and_rescale_axes is not None else recentering_axes

        # Channels
        self.n_channels = n_channels
        self.used_channels = list(used_channels) if used_channels is not None else None
        self.channel_groups = list(channel_groups) if channel_groups is not None else None

        # Step options
        self.equalization_method = equalization_method
        self.recentering_width_equalization = recentering_width_equalization
        self.alignment_harmonic = alignment_harmonic
        self.alignment_reference = alignment_reference
        self.twist_and_rescale_method = twist_and_rescale_method
        self.correlation_partners = tuple(correlation_partners) if correlation_partners is not None else None
        self.cuts = cuts if cuts is not None else cuts_module.Cuts()
        self.min_entries_to_validate = min_entries_to_validate

        # Registration information
        self.detector_id = -1
        self.global_index = -1
        self.local_index = -1
        # Indices of the alignment reference and correlation partners. Resolved at initialization.
        self.alignment_reference_index = -1
        self.correlation_partner_indices: Tuple[int, int] = (-1, -1)

        # Everything which is requested is applied and filled until the framework decides otherwise.
        self._apply_correction: Dict[params.CorrectionStep, bool] = {}
        self._fill_histogram: Dict[params.CorrectionStep, bool] = {}
        self.reset_steps()

        self._validate()

    def reset_steps(self) -> None:
        """ Apply and fill every requested step again, undoing any earlier ``disable_from``. """
        self._apply_correction = {
            step: step in self.requested_corrections for step in params.CorrectionStep.corrections()
        }
        self._fill_histogram = dict(self._apply_correction)

    def _validate(self) -> None:
        if self.min_harmonic < 1 or self.max_harmonic < self.min_harmonic:
            raise ValueError(f"Invalid harmonic range [{self.min_harmonic}, {self.max_harmonic}] for {self.name}")
        if self.q_vector_harmonic_limit > params.MAX_HARMONIC_NUMBER_SUPPORTED:
            raise ValueError(
                f"Configuration {self.name} requires harmonic {self.q_vector_harmonic_limit}, but the highest"
                f" supported harmonic is {params.MAX_HARMONIC_NUMBER_SUPPORTED}"
            )
        if self.n_channels < 0:
            raise ValueError(f"Invalid number of channels {self.n_channels} for {self.name}")
        if self.is_requested_correction(params.CorrectionStep.equalization) and self.n_channels == 0:
            raise ValueError(f"Channel equalization was requested for {self.name}, but the detector has no channels.")
        for label, values in [("used channels", self.used_channels), ("channel groups", self.channel_groups)]:
            if values is not None and len(values) != self.n_channels:
                raise ValueError(f"Expected {self.n_channels} {label} for {self.name}, but received {len(values)}")
        if self.is_requested_correction(params.CorrectionStep.alignment) and self.alignment_reference is None:
            raise ValueError(f"Alignment was requested for {self.name}, but no reference configuration was provided.")
        if self.is_requested_correction(params.CorrectionStep.alignment) and self.alignment_harmonic > self.max_harmonic:
            raise ValueError(
                f"Alignment harmonic {self.alignment_harmonic} of {self.name} is above the maximum harmonic {self.max_harmonic}"
            )
        if self.twist_and_rescale_method == params.TwistAndRescaleMethod.correlations \
                and self.requests_twist_or_rescaling and self.correlation_partners is None:
            raise ValueError(f"Three detector correlations were requested for {self.name}, but no partners were provided.")

    @property
    def harmonics(self) -> List[int]:
        """ Harmonics which are corrected. """
        return list(range(self.min_harmonic, self.max_harmonic + 1))

    @property
    def q_vector_harmonic_limit(self) -> int:
        """ Highest harmonic which is built.

        The double harmonic twist and rescaling needs the Qn vector at twice the corrected harmonics.
        """
        if self.twist_and_rescale_method == params.TwistAndRescaleMethod.double_harmonic:
            return 2 * self.max_harmonic
        return self.max_harmonic

    @property
    def built_harmonics(self) -> List[int]:
        """ Harmonics which are built from the data vectors and tracked through the steps. """
        return list(range(self.min_harmonic, self.q_vector_harmonic_limit + 1))

    @property
    def is_channelized(self) -> bool:
        return self.n_channels > 0

    @property
    def requests_twist_or_rescaling(self) -> bool:
        return self.is_requested_correction(params.CorrectionStep.twist) \
            or self.is_requested_correction(params.CorrectionStep.rescaling)

    def lower_min_harmonic_for_alignment(self) -> None:
        """ Ensure that the alignment harmonic is corrected, since it's needed to determine the rotation. """
        if self.is_requested_correction(params.CorrectionStep.alignment) and self.min_harmonic > self.alignment_harmonic:
            logger.info(
                f"Lowering the minimum harmonic of {self.name} from {self.min_harmonic} to the alignment"
                f" harmonic {self.alignment_harmonic}"
            )
            self.min_harmonic = self.alignment_harmonic

    def pass_stages(self) -> List[params.CorrectionStep]:
        """ Requested steps which need calibration histograms filled in a separate pass over the data.

        The twist and rescaling share a single pass. When using the double harmonic method, they
        are calibrated with the same histograms as the recentering, so they only require a separate
        pass if the recentering isn't requested.
        """
        stages = [
            step for step in (params.CorrectionStep.equalization, params.CorrectionStep.recentering,
                              params.CorrectionStep.alignment)
            if self.is_requested_correction(step)
        ]
        if self.requests_twist_or_rescaling:
            if self.twist_and_rescale_method != params.TwistAndRescaleMethod.double_harmonic \
                    or not self.is_requested_correction(params.CorrectionStep.recentering):
                stages.append(params.CorrectionStep.twist)
        return stages

    def is_requested_correction(self, step: params.CorrectionStep) -> bool:
        return step in self.requested_corrections

    def is_apply_correction(self, step: params.CorrectionStep) -> bool:
        if step == params.CorrectionStep.raw:
            return True
        return self._apply_correction[step]

    def set_apply_correction(self, step: params.CorrectionStep, value: bool) -> None:
        self._apply_correction[step] = value and self.is_requested_correction(step)

    def is_requested_fill_histogram(self, step: params.CorrectionStep) -> bool:
        return self.is_requested_correction(step)

    def is_fill_histogram(self, step: params.CorrectionStep) -> bool:
        return self._fill_histogram[step]

    def set_fill_histogram(self, step: params.CorrectionStep, value: bool) -> None:
        self._fill_histogram[step] = value and self.is_requested_correction(step)

    def disable_from(self, step: params.CorrectionStep) -> None:
        """ Disable applying a step, as well as applying and filling every later step.

        The later steps depend on the output of the disabled step, so they can't be applied, and their
        calibration histograms would be filled with the wrong inputs. The twist and rescaling are
        calibrated together, so they are disabled together.
        """
        disabled = [step]
        if step == params.CorrectionStep.twist:
            disabled.append(params.CorrectionStep.rescaling)
        for disabled_step in disabled:
            self.set_apply_correction(disabled_step, False)
        for later_step in params.CorrectionStep.corrections():
            if later_step.value > disabled[-1].value:
                self.set_apply_correction(later_step, False)
                self.set_fill_histogram(later_step, False)

    def passes_cuts(self, variables: Sequence[float]) -> bool:
        return self.cuts.is_selected(variables)

    def use_channel(self, channel_id: int) -> bool:
        """ Check whether a data vector from the given channel should be used.

        Non-channelized detectors accept every data vector.
        """
        if not self.is_channelized:
            return True
        if channel_id < 0 or channel_id >= self.n_channels:
            return False
        if self.used_channels is None:
            return True
        return bool(self.used_channels[channel_id])

class DetectorRegistry:
    """ Registry of the detector configurations.

    The configurations are indexed globally, in the order of registration, and locally, within each
    detector. Detectors are indexed in the order in which they were first seen.
    """
    def __init__(self) -> None:
        self.configurations: List[DetectorConfiguration] = []
        self._detectors: Dict[Hashable, List[DetectorConfiguration]] = {}

    def register(self, configuration: DetectorConfiguration) -> int:
        """ Register a configuration.

        Args:
            configuration: Configuration to register.
        Returns:
            The global index of the configuration.
        """
        if self.find(configuration.name) is not None:
            raise ValueError(f"Configuration named {configuration.name} is already registered.")
        detector_configurations = self._detectors.setdefault(configuration.detector, [])
        configuration.detector_id = list(self._detectors).index(configuration.detector)
        configuration.local_index = len(detector_configurations)
        configuration.global_index = len(self.configurations)
        detector_configurations.append(configuration)
        self.configurations.append(configuration)
        return configuration.global_index

    def configurations_for_detector(self, detector: Hashable) -> List[DetectorConfiguration]:
        """ Configurations which use the detector. Empty if the detector isn't registered. """
        return self._detectors.get(detector, [])

    @property
    def detectors(self) -> List[Hashable]:
        return list(self._detectors)

    def find(self, name: str) -> Optional[DetectorConfiguration]:
        for configuration in self.configurations:
            if configuration.name == name:
                return configuration
        return None

    def index_of(self, name: str) -> int:
        """ Global index of the named configuration.

        Raises:
            KeyError: If the configuration isn't registered.
        """
        configuration = self.find(name)
        if configuration is None:
            raise KeyError(name, f"Configuration {name} is not registered. Available: {[c.name for c in self.configurations]}")
        return configuration.global_index

    def __getitem__(self, global_index: int) -> DetectorConfiguration:
        return self.configurations[global_index]

    def __iter__(self) -> Iterator[DetectorConfiguration]:
        return iter(self.configurations)

    def __len__(self) -> int:
        return len(self.configurations)
