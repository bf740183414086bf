#!/usr/bin/env python

""" Calibration and QA histograms of a detector configuration.

The same structure is used for the output histograms, which are created and filled during the
current pass, and for the input histograms, which are attached from the calibration histograms of a
previous pass. The histogram names only depend on the configuration name, so the output of one pass
can directly be used as the input of the next one.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from qn_corrections.base import histograms
from qn_corrections.base import params
from qn_corrections.base.detector_configuration import DetectorConfiguration

logger = logging.getLogger(__name__)

# Detector combinations for the three detector correlations. A is the configuration to be corrected,
# while B and C are its correlation partners.
CORRELATION_COMBINATIONS = ("AB", "BC", "CA")

def common_harmonics(first: DetectorConfiguration, second: DetectorConfiguration) -> List[int]:
    """ Harmonics corrected in both configurations, which can be correlated between them. """
    return [h for h in first.harmonics if second.min_harmonic <= h <= second.max_harmonic]

def _is_filled(profile: histograms.HistogramBase) -> bool:
    """ Check whether the attached profile was filled in the previous pass. """
    if profile.entries_histogram.entries == 0:
        logger.warning(f"Calibration histograms of {profile.name} don't contain any entries.")
        return False
    return True

class CalibrationHistograms:
    """ Calibration histograms of a single detector configuration.

    Only the histograms needed for the requested corrections are created or attached.

    Args:
        configuration: Detector configuration.

    Attributes:
        configuration: Detector configuration.
        multiplicity: Average multiplicity per channel, for the channel equalization.
        group_multiplicity: Average multiplicity per channel group, for the group equalization.
        mean_q: Average Qn vector components, for the recentering and the double harmonic twist and rescaling.
        u2n: Averages of cos(2n phi) and sin(2n phi) of the data vectors, for the u2n twist and rescaling.
        alignment: Correlations with the alignment reference.
        twist_moments: Averages used by the double harmonic or u2n twist and rescaling. Only attached.
        correlations: Correlation profiles of (AB, BC, CA) for each twist and rescaling axis.
        qa_mean_q: Average Qn vector components after each step. Only for QA.
        qa_multiplicity: Average event multiplicity. Only for QA.
        qa_equalized_multiplicity: Average equalized weight per channel for each equalization method. Only for QA.
    """
    def __init__(self, configuration: DetectorConfiguration):
        self.configuration = configuration
        self.multiplicity: Optional[histograms.ChannelizedProfile] = None
        self.group_multiplicity: Optional[histograms.ChannelizedProfile] = None
        self.mean_q: Optional[histograms.ComponentsProfile] = None
        self.u2n: Optional[histograms.ComponentsProfile] = None
        self.alignment: Optional[histograms.CorrelationComponentsProfile] = None
        self.twist_moments: Optional[histograms.ComponentsProfile] = None
        self.correlations: Dict[int, List[histograms.CorrelationComponentsHarmonicProfile]] = {}
        self.qa_mean_q: Dict[params.CorrectionStep, histograms.ComponentsProfile] = {}
        self.qa_multiplicity: Optional[histograms.Profile] = None
        self.qa_equalized_multiplicity: Dict[params.EqualizationMethod, histograms.ChannelizedProfile] = {}

    @property
    def _uses_mean_q(self) -> bool:
        conf = self.configuration
        return conf.is_requested_correction(params.CorrectionStep.recentering) or (
            conf.requests_twist_or_rescaling
            and conf.twist_and_rescale_method == params.TwistAndRescaleMethod.double_harmonic
        )

    @property
    def n_channel_groups(self) -> int:
        groups = self.configuration.channel_groups
        return max(groups) + 1 if groups else 0

    # Profile definitions. The names must be stable between passes.
    def _multiplicity_profile(self) -> histograms.ChannelizedProfile:
        conf = self.configuration
        return histograms.ChannelizedProfile(
            f"{conf.name}Mult", f"{conf.name} channel multiplicity", conf.equalization_axes,
            n_channels = conf.n_channels,
            error_mode = params.ErrorMode.spread, validation_threshold = conf.min_entries_to_validate,
        )

    def _group_multiplicity_profile(self) -> histograms.ChannelizedProfile:
        conf = self.configuration
        return histograms.ChannelizedProfile(
            f"{conf.name}GroupMult", f"{conf.name} channel group multiplicity", conf.equalization_axes,
            n_channels = self.n_channel_groups,
            error_mode = params.ErrorMode.spread, validation_threshold = conf.min_entries_to_validate,
        )

    def _mean_q_profile(self, error_mode: params.ErrorMode = params.ErrorMode.mean) -> histograms.ComponentsProfile:
        conf = self.configuration
        return histograms.ComponentsProfile(
            f"{conf.name}MeanQ", f"{conf.name} average Qn vector", conf.recentering_axes,
            error_mode = error_mode, validation_threshold = conf.min_entries_to_validate,
        )

    def _u2n_profile(self) -> histograms.ComponentsProfile:
        conf = self.configuration
        return histograms.ComponentsProfile(
            f"{conf.name}U2n", f"{conf.name} cos(2n phi) and sin(2n phi) averages", conf.twist_and_rescale_axes,
            validation_threshold = conf.min_entries_to_validate,
        )

    def _alignment_profile(self) -> histograms.CorrelationComponentsProfile:
        conf = self.configuration
        return histograms.CorrelationComponentsProfile(
            f"{conf.name}Align", f"{conf.name} correlations with {conf.alignment_reference}", conf.alignment_axes,
            validation_threshold = conf.min_entries_to_validate,
        )

    def _correlation_profiles(self, axis_index: int) -> List[histograms.CorrelationComponentsHarmonicProfile]:
        conf = self.configuration
        axes = conf.twist_and_rescale_axes.sub_axes(axis_index)
        return [
            histograms.CorrelationComponentsHarmonicProfile(
                f"{conf.name}Correlation{combination}_axis{axis_index}",
                f"{conf.name} {combination} correlations", axes,
                validation_threshold = conf.min_entries_to_validate,
            )
            for combination in CORRELATION_COMBINATIONS
        ]

    def create(self, histogram_list: histograms.HistogramList,
               partners: Optional[Tuple[DetectorConfiguration, DetectorConfiguration]] = None) -> None:
        """ Create the calibration histograms for the requested corrections.

        Args:
            histogram_list: List where the histograms are stored.
            partners: Correlation partners (B, C), for the three detector correlations.
        Returns:
            None.
        """
        conf = self.configuration
        if conf.is_requested_correction(params.CorrectionStep.equalization):
            self.multiplicity = self._multiplicity_profile()
            self.multiplicity.create_histograms(
                histogram_list, used_channels = conf.used_channels, channel_groups = conf.channel_groups,
            )
            if conf.channel_groups is not None:
                self.group_multiplicity = self._group_multiplicity_profile()
                self.group_multiplicity.create_histograms(histogram_list)
        if self._uses_mean_q:
            self.mean_q = self._mean_q_profile()
            self.mean_q.create_histograms(
                histogram_list, n_harmonics = len(conf.built_harmonics), harmonic_map = conf.built_harmonics,
            )
        if conf.requests_twist_or_rescaling and conf.twist_and_rescale_method == params.TwistAndRescaleMethod.u2n:
            self.u2n = self._u2n_profile()
            self.u2n.create_histograms(histogram_list, n_harmonics = len(conf.harmonics), harmonic_map = conf.harmonics)
        if conf.is_requested_correction(params.CorrectionStep.alignment):
            self.alignment = self._alignment_profile()
            self.alignment.create_histograms(histogram_list)
        if conf.requests_twist_or_rescaling and conf.twist_and_rescale_method == params.TwistAndRescaleMethod.correlations:
            if partners is None:
                raise ValueError(f"Correlation partners are required to create the correlation histograms of {conf.name}")
            a, (b, c) = conf, partners
            pair_harmonics = [common_harmonics(a, b), common_harmonics(b, c), common_harmonics(c, a)]
            for axis_index in range(conf.twist_and_rescale_axes.dimension):
                profiles = self._correlation_profiles(axis_index)
                for profile, harmonics in zip(profiles, pair_harmonics):
                    profile.create_histograms(histogram_list, n_harmonics = len(harmonics), harmonic_map = harmonics)
                self.correlations[axis_index] = profiles

    def create_qa(self, histogram_list: histograms.HistogramList) -> None:
        """ Create the QA histograms.

        Args:
            histogram_list: List where the histograms are stored.
        Returns:
            None.
        """
        conf = self.configuration
        steps = [params.CorrectionStep.raw] + [
            step for step in params.CorrectionStep.corrections() if conf.is_requested_correction(step)
        ]
        for step in steps:
            profile = histograms.ComponentsProfile(
                f"{conf.name}MeanQ{step.display_str()}", f"{conf.name} average Qn vector after {step}",
                conf.recentering_axes,
            )
            profile.create_histograms(histogram_list, n_harmonics = len(conf.harmonics), harmonic_map = conf.harmonics)
            self.qa_mean_q[step] = profile

        self.qa_multiplicity = histograms.Profile(
            f"{conf.name}Multiplicity", f"{conf.name} event multiplicity", conf.recentering_axes,
        )
        self.qa_multiplicity.create_histograms(histogram_list)

        if conf.is_requested_correction(params.CorrectionStep.equalization):
            for method in params.EqualizationMethod:
                profile = histograms.ChannelizedProfile(
                    f"{conf.name}Mult{method.name.capitalize()}Equalized", f"{conf.name} {method.display_str()} weights",
                    conf.equalization_axes, n_channels = conf.n_channels, error_mode = params.ErrorMode.spread,
                )
                profile.create_histograms(histogram_list, used_channels = conf.used_channels, channel_groups = conf.channel_groups)
                self.qa_equalized_multiplicity[method] = profile

    def attach_equalization(self, histogram_list: histograms.HistogramList) -> bool:
        conf = self.configuration
        multiplicity = self._multiplicity_profile()
        if not multiplicity.attach_histograms(histogram_list, used_channels = conf.used_channels,
                                              channel_groups = conf.channel_groups) \
                or not _is_filled(multiplicity):
            return False
        if conf.channel_groups is not None:
            group_multiplicity = self._group_multiplicity_profile()
            if not group_multiplicity.attach_histograms(histogram_list):
                return False
            self.group_multiplicity = group_multiplicity
        self.multiplicity = multiplicity
        return True

    def attach_recentering(self, histogram_list: histograms.HistogramList) -> bool:
        conf = self.configuration
        # The width equalization needs the spread of the components.
        error_mode = params.ErrorMode.spread if conf.recentering_width_equalization else params.ErrorMode.mean
        mean_q = self._mean_q_profile(error_mode = error_mode)
        if not mean_q.attach_histograms(histogram_list, harmonics = conf.harmonics) or not _is_filled(mean_q):
            return False
        self.mean_q = mean_q
        return True

    def attach_alignment(self, histogram_list: histograms.HistogramList) -> bool:
        alignment = self._alignment_profile()
        if not alignment.attach_histograms(histogram_list):
            return False
        self.alignment = alignment
        return True

    def attach_twist_and_rescale(self, histogram_list: histograms.HistogramList) -> bool:
        """ Attach the twist and rescaling calibration for the configured method.

        Note:
            The double harmonic moments are read from the MeanQ profile at twice the harmonic, which is
            binned in the recentering axes. The twist and rescaling axes are only used by the u2n and
            correlations methods.
        """
        conf = self.configuration
        method = conf.twist_and_rescale_method
        if method == params.TwistAndRescaleMethod.double_harmonic:
            moments = self._mean_q_profile()
            if not moments.attach_histograms(histogram_list, harmonics = [2 * h for h in conf.harmonics]) \
                    or not _is_filled(moments):
                return False
            self.twist_moments = moments
        elif method == params.TwistAndRescaleMethod.u2n:
            moments = self._u2n_profile()
            if not moments.attach_histograms(histogram_list, harmonics = conf.harmonics) or not _is_filled(moments):
                return False
            self.twist_moments = moments
        else:
            correlations = {}
            for axis_index in range(conf.twist_and_rescale_axes.dimension):
                profiles = self._correlation_profiles(axis_index)
                if not all(profile.attach_histograms(histogram_list) for profile in profiles):
                    return False
                correlations[axis_index] = profiles
            self.correlations = correlations
        return True

    def twist_and_rescale_correlations(self, axis_index: int = 0) -> Sequence[histograms.CorrelationComponentsHarmonicProfile]:
        """ Correlation profiles (AB, BC, CA) of the selected axis. """
        return self.correlations[axis_index]
