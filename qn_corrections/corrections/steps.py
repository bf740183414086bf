#!/usr/bin/env python

""" Correction steps for the data vectors and Qn vectors.

Each step is a stateless transformation. The calibration parameters are read from histograms which
were filled during a previous pass over the data, and the corrected Qn vector is written into a
preallocated output vector. Harmonics which are undefined (because the detector was empty) are never
corrected.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
import numpy as np
from typing import Optional, Sequence

from qn_corrections.base import histograms
from qn_corrections.base import params
from qn_corrections.base.qn_vector import DataVector, QnVector

logger = logging.getLogger(__name__)

# Calibration values at or below this value are considered to be empty.
MINIMUM_SIGNIFICANT_VALUE = 1e-6
# Number of standard deviations by which <XY> and <YX> must differ for the alignment to be applied.
ALIGNMENT_SIGNIFICANCE = 2.0

def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return np.nan
    return numerator / denominator

def _sqrt(value: float) -> float:
    if value < 0:
        return np.nan
    return float(np.sqrt(value))

def equalize_data_vector_weights(data_vectors: Sequence[DataVector],
                                 profile: histograms.ChannelizedProfile,
                                 variables: Sequence[float],
                                 group_profile: Optional[histograms.ChannelizedProfile] = None,
                                 width_a: float = 1.0, width_b: float = 0.1) -> None:
    """ Determine the gain equalized weights of the data vectors.

    For each channel, with average multiplicity <M> and width sigma_M:

    - Average equalization: w / <M>
    - Width equalization: A + B * (w - <M>) / sigma_M

    When the channels are grouped, both weights are also scaled by the average multiplicity of the
    group of the channel. Channels without calibration information receive a weight of 0.

    Args:
        data_vectors: Data vectors to equalize. They are modified in place.
        profile: Average multiplicity of each channel. Must report the spread as the error.
        variables: Event variable vector.
        group_profile: Average multiplicity of each channel group. Optional.
        width_a: Parameter A of the width equalization.
        width_b: Parameter B of the width equalization.
    Returns:
        None.
    """
    for data_vector in data_vectors:
        bin = profile.get_bin(variables, data_vector.channel_id)
        average = profile.get_bin_content(bin)
        width = profile.get_bin_error(bin)

        group_weight = 1.0
        if group_profile is not None:
            group = profile.channel_group(data_vector.channel_id)
            group_weight = group_profile.get_bin_content(group_profile.get_bin(variables, group))
            if group_weight <= MINIMUM_SIGNIFICANT_VALUE:
                group_weight = 0.0

        if average > MINIMUM_SIGNIFICANT_VALUE:
            data_vector.average_equalized_weight = data_vector.weight / average * group_weight
            width_term = (data_vector.weight - average) / width if width > MINIMUM_SIGNIFICANT_VALUE else 0.0
            data_vector.width_equalized_weight = (width_a + width_b * width_term) * group_weight
        else:
            data_vector.average_equalized_weight = 0.0
            data_vector.width_equalized_weight = 0.0

def recenter(q_in: QnVector, q_out: QnVector, profile: histograms.ComponentsProfile, bin: int,
             harmonics: Sequence[int], width_equalization: bool = False) -> None:
    """ Recenter the Qn vector by subtracting the average Qn vector of the event class.

    Args:
        q_in: Input Qn vector.
        q_out: Output Qn vector. Overwritten.
        profile: Average Qn vector components.
        bin: Event class bin of the profile.
        harmonics: Harmonics to recenter.
        width_equalization: If True, also divide the components by their spread. The profile must
            then report the spread as the error.
    Returns:
        None.
    """
    q_out.set_from(q_in)
    for h in harmonics:
        if not q_in.is_defined(h):
            continue
        qx = q_in.qx(h) - profile.get_x_bin_content(h, bin)
        qy = q_in.qy(h) - profile.get_y_bin_content(h, bin)
        if width_equalization:
            width_x = profile.get_x_bin_error(h, bin)
            width_y = profile.get_y_bin_error(h, bin)
            if width_x > MINIMUM_SIGNIFICANT_VALUE:
                qx /= width_x
            if width_y > MINIMUM_SIGNIFICANT_VALUE:
                qy /= width_y
        q_out.set_qx(h, qx)
        q_out.set_qy(h, qy)
        q_out.set_status(h, params.QnVectorStatus.recentered)

def alignment_angle(profile: histograms.CorrelationComponentsProfile, bin: int, harmonic: int) -> Optional[float]:
    """ Rotation angle which aligns a detector with its reference.

    Determined from the correlations of the detector (d) and reference (r) Qn vector components as
    ``-atan2(<Xd Yr> - <Yd Xr>, <Xd Xr> + <Yd Yr>) / n``.

    Args:
        profile: Correlations between the detector and reference Qn vectors.
        bin: Event class bin of the profile.
        harmonic: Harmonic of the correlations.
    Returns:
        The rotation angle, or None if there is no significant misalignment.
    """
    xx = profile.get_component_bin_content(histograms.Component.xx, bin)
    yy = profile.get_component_bin_content(histograms.Component.yy, bin)
    xy = profile.get_component_bin_content(histograms.Component.xy, bin)
    yx = profile.get_component_bin_content(histograms.Component.yx, bin)
    error_xy = profile.get_component_bin_error(histograms.Component.xy, bin)
    error_yx = profile.get_component_bin_error(histograms.Component.yx, bin)

    difference = xy - yx
    if difference == 0 and xx + yy == 0:
        return None
    error = np.sqrt(error_xy ** 2 + error_yx ** 2)
    if error > 0 and np.abs(difference) / error < ALIGNMENT_SIGNIFICANCE:
        return None
    return float(-np.arctan2(difference, xx + yy) / harmonic)

def align(q_in: QnVector, q_out: QnVector, profile: histograms.CorrelationComponentsProfile, bin: int,
          alignment_harmonic: int, harmonics: Sequence[int]) -> None:
    """ Rotate the Qn vector to align the detector with its reference.

    Each harmonic ``h`` is rotated by ``-h * delta``, where delta is the alignment angle.

    Args:
        q_in: Input Qn vector.
        q_out: Output Qn vector. Overwritten.
        profile: Correlations between the detector and reference Qn vectors.
        bin: Event class bin of the profile.
        alignment_harmonic: Harmonic of the correlations.
        harmonics: Harmonics to align.
    Returns:
        None.
    """
    q_out.set_from(q_in)
    delta = alignment_angle(profile = profile, bin = bin, harmonic = alignment_harmonic)
    for h in harmonics:
        if not q_in.is_defined(h):
            continue
        if delta is not None:
            qx, qy = q_in.qx(h), q_in.qy(h)
            q_out.set_qx(h, qx * np.cos(h * delta) + qy * np.sin(h * delta))
            q_out.set_qy(h, qy * np.cos(h * delta) - qx * np.sin(h * delta))
        q_out.set_status(h, params.QnVectorStatus.aligned)

def _twist_and_rescale_harmonic(q_in: QnVector, q_twist: QnVector, q_rescale: QnVector, harmonic: int,
                                lambda_plus: float, lambda_minus: float, a_plus: float, a_minus: float,
                                apply_twist: bool, apply_rescale: bool) -> None:
    """ Apply the twist and rescaling with the given parameters to one harmonic.

    Parameters which can't be determined (non-finite) leave the components unchanged.
    """
    qx, qy = q_in.qx(harmonic), q_in.qy(harmonic)
    if apply_twist:
        denominator = 1 - lambda_minus * lambda_plus
        if np.isfinite(lambda_plus) and np.isfinite(lambda_minus) and denominator != 0:
            qx, qy = (qx - lambda_minus * qy) / denominator, (qy - lambda_plus * qx) / denominator
        q_twist.set_qx(harmonic, qx)
        q_twist.set_qy(harmonic, qy)
        q_twist.set_status(harmonic, params.QnVectorStatus.twisted)
    if apply_rescale:
        if np.isfinite(a_plus) and np.isfinite(a_minus) and a_plus != 0 and a_minus != 0:
            qx, qy = qx / a_plus, qy / a_minus
        q_rescale.set_qx(harmonic, qx)
        q_rescale.set_qy(harmonic, qy)
        q_rescale.set_status(harmonic, params.QnVectorStatus.rescaled)

def twist_and_rescale_double_harmonic(q_in: QnVector, q_twist: QnVector, q_rescale: QnVector,
                                      profile: histograms.ComponentsProfile, bin: int, harmonics: Sequence[int],
                                      apply_twist: bool, apply_rescale: bool,
                                      moment_harmonic_factor: int = 2) -> None:
    """ Twist and rescale using the averages of cos(2n phi) and sin(2n phi).

    With X2n = <cos(2n phi)> and Y2n = <sin(2n phi)>:

    - A+ = 1 + X2n, A- = 1 - X2n
    - Lambda+ = Y2n / A+, Lambda- = Y2n / A-
    - Twist: Qx' = (Qx - Lambda- Qy) / (1 - Lambda- Lambda+), Qy' = (Qy - Lambda+ Qx) / (1 - Lambda- Lambda+)
    - Rescaling: Qx'' = Qx' / A+, Qy'' = Qy' / A-

    The rescaling is applied to the twisted vector if the twist is applied.

    Args:
        q_in: Input Qn vector.
        q_twist: Twisted Qn vector. Overwritten.
        q_rescale: Rescaled Qn vector. Overwritten.
        profile: Profile containing the averages.
        bin: Event class bin of the profile.
        harmonics: Harmonics to correct.
        apply_twist: Whether to apply the twist.
        apply_rescale: Whether to apply the rescaling.
        moment_harmonic_factor: The averages for harmonic n are stored in the profile at harmonic
            ``moment_harmonic_factor * n``. 2 for the average Qn vector profile at twice the harmonic, and
            1 for a profile which directly stores the cos(2n phi) and sin(2n phi) averages at harmonic n.
    Returns:
        None.
    """
    q_twist.set_from(q_in)
    q_rescale.set_from(q_in)
    for h in harmonics:
        if not q_in.is_defined(h):
            continue
        x2n = profile.get_x_bin_content(moment_harmonic_factor * h, bin)
        y2n = profile.get_y_bin_content(moment_harmonic_factor * h, bin)
        a_plus = 1 + x2n
        a_minus = 1 - x2n
        _twist_and_rescale_harmonic(
            q_in, q_twist, q_rescale, h,
            lambda_plus = _ratio(y2n, a_plus), lambda_minus = _ratio(y2n, a_minus),
            a_plus = a_plus, a_minus = a_minus,
            apply_twist = apply_twist, apply_rescale = apply_rescale,
        )

def twist_and_rescale_correlations(q_in: QnVector, q_twist: QnVector, q_rescale: QnVector,
                                   correlations: Sequence[histograms.CorrelationComponentsHarmonicProfile],
                                   bin: int, harmonics: Sequence[int],
                                   apply_twist: bool, apply_rescale: bool) -> None:
    """ Twist and rescale using the correlations between three detectors.

    The detector to correct is A, and B and C are the partner detectors. The correlations are provided
    as (A, B), (B, C), (C, A), where the component XY of (i, j) is <Qx_i Qy_j>. Then:

    - Lambda+ = <XA YB> / <XA XB>, Lambda- = <YA XB> / <YA YB>
    - A+ = sqrt(2 <XA XC>) <XA XB> / sqrt(<XA XB> <XB XC> + <XA YB> <XB YC>)
    - A- = sqrt(2 <YA YC>) <YA YB> / sqrt(<YA XB> <YB XC> + <YA YB> <YB YC>)

    Harmonics which aren't available in all three correlations are left unchanged.

    Args:
        q_in: Input Qn vector.
        q_twist: Twisted Qn vector. Overwritten.
        q_rescale: Rescaled Qn vector. Overwritten.
        correlations: (A, B), (B, C) and (C, A) correlation profiles.
        bin: Bin of the correlation profiles.
        harmonics: Harmonics to correct.
        apply_twist: Whether to apply the twist.
        apply_rescale: Whether to apply the rescaling.
    Returns:
        None.
    """
    q_twist.set_from(q_in)
    q_rescale.set_from(q_in)
    ab, bc, ca = correlations
    Component = histograms.Component
    for h in harmonics:
        if not q_in.is_defined(h):
            continue
        if any(h not in profile.harmonics for profile in correlations):
            continue
        x_a_x_b = ab.get_component_bin_content(Component.xx, h, bin)
        x_a_y_b = ab.get_component_bin_content(Component.xy, h, bin)
        y_a_x_b = ab.get_component_bin_content(Component.yx, h, bin)
        y_a_y_b = ab.get_component_bin_content(Component.yy, h, bin)
        x_b_x_c = bc.get_component_bin_content(Component.xx, h, bin)
        x_b_y_c = bc.get_component_bin_content(Component.xy, h, bin)
        y_b_x_c = bc.get_component_bin_content(Component.yx, h, bin)
        y_b_y_c = bc.get_component_bin_content(Component.yy, h, bin)
        x_a_x_c = ca.get_component_bin_content(Component.xx, h, bin)
        y_a_y_c = ca.get_component_bin_content(Component.yy, h, bin)

        a_plus = _ratio(_sqrt(2 * x_a_x_c) * x_a_x_b, _sqrt(x_a_x_b * x_b_x_c + x_a_y_b * x_b_y_c))
        a_minus = _ratio(_sqrt(2 * y_a_y_c) * y_a_y_b, _sqrt(y_a_x_b * y_b_x_c + y_a_y_b * y_b_y_c))
        _twist_and_rescale_harmonic(
            q_in, q_twist, q_rescale, h,
            lambda_plus = _ratio(x_a_y_b, x_a_x_b), lambda_minus = _ratio(y_a_x_b, y_a_y_b),
            a_plus = a_plus, a_minus = a_minus,
            apply_twist = apply_twist, apply_rescale = apply_rescale,
        )
