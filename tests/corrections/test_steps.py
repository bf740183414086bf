#!/usr/bin/env python

""" Tests for the correction steps.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
import numpy as np
import pytest

from qn_corrections.base import histograms
from qn_corrections.base import params
from qn_corrections.base.qn_vector import DataVector, QnVector
from qn_corrections.corrections import steps

# Setup logger
logger = logging.getLogger(__name__)

@pytest.fixture
def variables():
    """ Event variables in the 10-20% centrality bin. """
    v = np.full(10, -999.0)
    v[0] = 15
    return v

def _q_vector(max_harmonic, components, status = params.QnVectorStatus.raw):
    """ Create a Qn vector with the given components for each harmonic. """
    q = QnVector(max_harmonic = max_harmonic, name = "test")
    for h, (qx, qy) in components.items():
        q.set_qx(h, qx)
        q.set_qy(h, qy)
        q.set_status(h, status)
    return q

def _components_profile(axes, variables, values, n_harmonics, error_mode = params.ErrorMode.mean):
    """ Create a components profile, filled with the given (x, y) values for each harmonic.

    Args:
        values: List of {harmonic: (x, y)}, one entry per fill.
    """
    profile = histograms.ComponentsProfile("test", "test", axes, error_mode = error_mode)
    profile.create_histograms(histograms.HistogramList("test"), n_harmonics = n_harmonics)
    for entry in values:
        for h in range(1, n_harmonics + 1):
            x, y = entry.get(h, (0.0, 0.0))
            profile.fill_x(h, variables, x)
            profile.fill_y(h, variables, y)
    return profile

class TestEqualization:
    @pytest.fixture
    def profile(self, centrality_axes, variables):
        """ Channel multiplicities. Channel 0: 2 and 4, channel 1: 10 and 10, channels 2 and 3: empty. """
        profile = histograms.ChannelizedProfile("mult", "mult", centrality_axes, n_channels = 4,
                                                error_mode = params.ErrorMode.spread)
        profile.create_histograms(histograms.HistogramList("test"), channel_groups = [0, 0, 1, 1])
        for value_0, value_1 in [(2.0, 10.0), (4.0, 10.0)]:
            profile.fill(variables, 0, value_0)
            profile.fill(variables, 1, value_1)
        return profile

    def test_equalization(self, logging_mixin, profile, variables):
        """ Test the average and width equalization weights. """
        data_vectors = [DataVector(phi = 0.1, weight = 6.0, channel_id = 0),
                        DataVector(phi = 1.7, weight = 5.0, channel_id = 1),
                        DataVector(phi = 3.2, weight = 5.0, channel_id = 2)]
        steps.equalize_data_vector_weights(data_vectors, profile = profile, variables = variables)

        assert data_vectors[0].average_equalized_weight == pytest.approx(2.0)
        # A + B * (6 - 3) / 1
        assert data_vectors[0].width_equalized_weight == pytest.approx(1.3)
        assert data_vectors[1].average_equalized_weight == pytest.approx(0.5)
        # Vanishing width, so only A remains.
        assert data_vectors[1].width_equalized_weight == pytest.approx(1.0)
        # Channels without calibration information are dropped.
        assert data_vectors[2].average_equalized_weight == 0
        assert data_vectors[2].width_equalized_weight == 0
        assert data_vectors[0].equalized_weight(params.EqualizationMethod.width) == pytest.approx(1.3)

    def test_group_equalization(self, logging_mixin, centrality_axes, profile, variables):
        """ Test scaling the equalized weight by the group multiplicity. """
        group_profile = histograms.ChannelizedProfile("group", "group", centrality_axes, n_channels = 2)
        group_profile.create_histograms(histograms.HistogramList("test"))
        for _ in range(2):
            group_profile.fill(variables, 0, 2.0)

        data_vectors = [DataVector(phi = 0.1, weight = 6.0, channel_id = 0)]
        steps.equalize_data_vector_weights(data_vectors, profile = profile, variables = variables,
                                           group_profile = group_profile)
        assert data_vectors[0].average_equalized_weight == pytest.approx(4.0)

class TestRecentering:
    def test_recenter(self, logging_mixin, centrality_axes, variables):
        """ Test subtracting the average Qn vector. """
        profile = _components_profile(centrality_axes, variables,
                                      values = [{1: (0.2, -0.1), 2: (0.05, 0.0)}] * 3, n_harmonics = 2)
        bin = profile.get_bin(variables)
        q_in = _q_vector(2, {1: (0.5, 0.5), 2: (0.05, 0.3)})
        q_out = QnVector(max_harmonic = 2)

        steps.recenter(q_in, q_out, profile, bin, harmonics = [1, 2])

        assert q_out.qx(1) == pytest.approx(0.3)
        assert q_out.qy(1) == pytest.approx(0.6)
        assert q_out.qx(2) == pytest.approx(0.0)
        assert q_out.qy(2) == pytest.approx(0.3)
        assert q_out.status(1) == params.QnVectorStatus.recentered
        # The input is untouched.
        assert q_in.qx(1) == 0.5

    def test_recenter_width_equalization(self, logging_mixin, centrality_axes, variables):
        """ Test recentering with the width equalization. """
        profile = _components_profile(centrality_axes, variables,
                                      values = [{1: (0.0, 0.1)}, {1: (0.4, 0.1)}], n_harmonics = 1,
                                      error_mode = params.ErrorMode.spread)
        bin = profile.get_bin(variables)
        q_in = _q_vector(1, {1: (0.6, 0.3)})
        q_out = QnVector(max_harmonic = 1)

        steps.recenter(q_in, q_out, profile, bin, harmonics = [1], width_equalization = True)

        assert q_out.qx(1) == pytest.approx(2.0)
        # No spread in y, so it's only recentered.
        assert q_out.qy(1) == pytest.approx(0.2)

    def test_empty_bin(self, logging_mixin, centrality_axes, variables):
        """ Test that an event class without enough entries leaves the vector unchanged. """
        profile = _components_profile(centrality_axes, variables, values = [{1: (0.2, 0.2)}], n_harmonics = 1)
        bin = profile.get_bin(variables)
        q_in = _q_vector(1, {1: (0.6, 0.3)})
        q_out = QnVector(max_harmonic = 1)

        steps.recenter(q_in, q_out, profile, bin, harmonics = [1])

        assert q_out.qx(1) == pytest.approx(0.6)
        assert q_out.qy(1) == pytest.approx(0.3)

class TestAlignment:
    def _profile(self, centrality_axes, variables, offset, harmonic = 2, n_events = 400):
        """ Correlations of a detector rotated by the offset with respect to its reference. """
        profile = histograms.CorrelationComponentsProfile("align", "align", centrality_axes)
        profile.create_histograms(histograms.HistogramList("test"))
        for psi in np.linspace(0, 2 * np.pi, n_events, endpoint = False):
            x_d, y_d = np.cos(harmonic * (psi + offset)), np.sin(harmonic * (psi + offset))
            x_r, y_r = np.cos(harmonic * psi), np.sin(harmonic * psi)
            profile.fill_xx(variables, x_d * x_r)
            profile.fill_xy(variables, x_d * y_r)
            profile.fill_yx(variables, y_d * x_r)
            profile.fill_yy(variables, y_d * y_r)
        return profile

    @pytest.mark.parametrize("offset", [0.1, -0.3], ids = ["Positive", "Negative"])
    def test_alignment_angle(self, logging_mixin, centrality_axes, variables, offset):
        """ Test recovering the misalignment angle. """
        profile = self._profile(centrality_axes, variables, offset)
        delta = steps.alignment_angle(profile, profile.get_bin(variables), harmonic = 2)
        assert delta == pytest.approx(offset)

    def test_no_significant_misalignment(self, logging_mixin, centrality_axes, variables):
        """ Test that an aligned detector isn't rotated. """
        profile = self._profile(centrality_axes, variables, offset = 0.0)
        assert steps.alignment_angle(profile, profile.get_bin(variables), harmonic = 2) is None

    def test_align(self, logging_mixin, centrality_axes, variables):
        """ Test rotating each harmonic back onto the reference. """
        offset = 0.1
        psi = 0.3
        profile = self._profile(centrality_axes, variables, offset)
        q_in = _q_vector(2, {h: (np.cos(h * (psi + offset)), np.sin(h * (psi + offset))) for h in [1, 2]},
                         status = params.QnVectorStatus.recentered)
        q_out = QnVector(max_harmonic = 2)

        steps.align(q_in, q_out, profile, profile.get_bin(variables), alignment_harmonic = 2, harmonics = [1, 2])

        for h in [1, 2]:
            assert q_out.event_plane(h) == pytest.approx(psi)
            assert q_out.status(h) == params.QnVectorStatus.aligned

class TestTwistAndRescale:
    @pytest.mark.parametrize("moments, expected_twist, expected_rescale", [
        ((0.2, 0.0), (0.6, 0.4), (0.5, 0.5)),
        ((0.0, 0.1), ((0.6 - 0.1 * 0.4) / 0.99, (0.4 - 0.1 * 0.6) / 0.99),
         ((0.6 - 0.1 * 0.4) / 0.99, (0.4 - 0.1 * 0.6) / 0.99)),
    ], ids = ["Rescale only", "Twist only"])
    def test_double_harmonic(self, logging_mixin, centrality_axes, variables, moments, expected_twist, expected_rescale):
        """ Test the double harmonic twist and rescaling. """
        profile = _components_profile(centrality_axes, variables, values = [{2: moments}] * 3, n_harmonics = 2)
        q_in = _q_vector(2, {1: (0.6, 0.4)}, status = params.QnVectorStatus.recentered)
        q_twist = QnVector(max_harmonic = 2)
        q_rescale = QnVector(max_harmonic = 2)

        steps.twist_and_rescale_double_harmonic(
            q_in, q_twist, q_rescale, profile, profile.get_bin(variables), harmonics = [1],
            apply_twist = True, apply_rescale = True,
        )

        assert (q_twist.qx(1), q_twist.qy(1)) == pytest.approx(expected_twist)
        assert (q_rescale.qx(1), q_rescale.qy(1)) == pytest.approx(expected_rescale)
        assert q_twist.status(1) == params.QnVectorStatus.twisted
        assert q_rescale.status(1) == params.QnVectorStatus.rescaled
        # Harmonic 2 was never defined, so it isn't corrected.
        assert not q_rescale.is_defined(2)

    def test_direct_moments(self, logging_mixin, centrality_axes, variables):
        """ Test reading the moments at the corrected harmonic, as for the u2n method. """
        profile = _components_profile(centrality_axes, variables, values = [{1: (0.2, 0.0)}] * 3, n_harmonics = 1)
        q_in = _q_vector(1, {1: (0.6, 0.4)}, status = params.QnVectorStatus.recentered)
        q_twist = QnVector(max_harmonic = 1)
        q_rescale = QnVector(max_harmonic = 1)

        steps.twist_and_rescale_double_harmonic(
            q_in, q_twist, q_rescale, profile, profile.get_bin(variables), harmonics = [1],
            apply_twist = False, apply_rescale = True, moment_harmonic_factor = 1,
        )

        assert (q_rescale.qx(1), q_rescale.qy(1)) == pytest.approx((0.5, 0.5))
        # The twist wasn't applied, so the vector keeps its input status.
        assert q_twist.status(1) == params.QnVectorStatus.recentered

    def test_correlations(self, logging_mixin, centrality_axes, variables):
        """ Test the three detector correlations method with isotropic correlations. """
        hist_list = histograms.HistogramList("test")
        correlations = []
        for name in ["AB", "BC", "CA"]:
            profile = histograms.CorrelationComponentsHarmonicProfile(name, name, centrality_axes)
            profile.create_histograms(hist_list, n_harmonics = 1)
            for _ in range(3):
                profile.fill_xx(1, variables, 0.02)
                profile.fill_xy(1, variables, 0.0)
                profile.fill_yx(1, variables, 0.0)
                profile.fill_yy(1, variables, 0.02)
            correlations.append(profile)
        q_in = _q_vector(2, {1: (0.6, 0.4), 2: (0.1, 0.1)}, status = params.QnVectorStatus.recentered)
        q_twist = QnVector(max_harmonic = 2)
        q_rescale = QnVector(max_harmonic = 2)

        steps.twist_and_rescale_correlations(
            q_in, q_twist, q_rescale, correlations, correlations[0].get_bin(variables), harmonics = [1, 2],
            apply_twist = True, apply_rescale = True,
        )

        # A = sqrt(2 * 0.02) * 0.02 / sqrt(0.02 * 0.02) = 0.2
        assert (q_rescale.qx(1), q_rescale.qy(1)) == pytest.approx((3.0, 2.0))
        assert (q_twist.qx(1), q_twist.qy(1)) == pytest.approx((0.6, 0.4))
        # Harmonic 2 isn't available in the correlations, so it's left unchanged.
        assert (q_rescale.qx(2), q_rescale.qy(2)) == pytest.approx((0.1, 0.1))
        assert q_rescale.status(2) == params.QnVectorStatus.recentered
