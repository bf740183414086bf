#!/usr/bin/env python

""" Tests for the correction parameters.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
from io import StringIO
import pytest
from pachyderm import yaml

from qn_corrections.base import params

# Setup logger
logger = logging.getLogger(__name__)

@pytest.mark.parametrize("step, expected_status", [
    (params.CorrectionStep.raw, params.QnVectorStatus.raw),
    (params.CorrectionStep.equalization, params.QnVectorStatus.equalized),
    (params.CorrectionStep.recentering, params.QnVectorStatus.recentered),
    (params.CorrectionStep.alignment, params.QnVectorStatus.aligned),
    (params.CorrectionStep.twist, params.QnVectorStatus.twisted),
    (params.CorrectionStep.rescaling, params.QnVectorStatus.rescaled),
], ids = ["Raw", "Equalization", "Recentering", "Alignment", "Twist", "Rescaling"])
def test_correction_step_status(logging_mixin, step, expected_status):
    """ Test the mapping from the correction step to the Qn vector status. """
    assert step.status == expected_status
    assert str(step) == step.name

def test_correction_steps_order(logging_mixin):
    """ Test that the corrections are provided in the order in which they are applied. """
    corrections = params.CorrectionStep.corrections()
    assert params.CorrectionStep.raw not in corrections
    assert [step.value for step in corrections] == [1, 2, 3, 4, 5]
    # Statuses are ordered in the same way, with undefined below all of them.
    statuses = [step.status for step in corrections]
    assert all(params.QnVectorStatus.undefined.value < status.value for status in statuses)

@pytest.mark.parametrize("method, expected", [
    (params.NormalizationMethod.none, {"str": "none", "display_str": "Q"}),
    (params.NormalizationMethod.q_over_sqrt_m, {"str": "q_over_sqrt_m", "display_str": "Q/sqrt(M)"}),
    (params.NormalizationMethod.q_over_m, {"str": "q_over_m", "display_str": "Q/M"}),
    (params.NormalizationMethod.magnitude, {"str": "magnitude", "display_str": "Q/|Q|"}),
], ids = ["None", "Q over sqrt M", "Q over M", "Magnitude"])
def test_normalization_method(logging_mixin, method, expected):
    """ Test the normalization method strings. """
    assert str(method) == expected["str"]
    assert method.display_str() == expected["display_str"]

@pytest.mark.parametrize("method, expected", [
    (params.TwistAndRescaleMethod.double_harmonic, "Double harmonic"),
    (params.TwistAndRescaleMethod.u2n, "U2n"),
    (params.TwistAndRescaleMethod.correlations, "Correlations"),
], ids = ["Double harmonic", "u2n", "Correlations"])
def test_twist_and_rescale_method(logging_mixin, method, expected):
    """ Test the twist and rescale method display strings. """
    assert method.display_str() == expected

@pytest.mark.parametrize("obj", [
    params.QnVectorStatus.recentered,
    params.CorrectionStep.alignment,
    params.NormalizationMethod.q_over_m,
    params.EqualizationMethod.width,
    params.TwistAndRescaleMethod.correlations,
    params.ErrorMode.spread,
], ids = ["QnVectorStatus", "CorrectionStep", "NormalizationMethod", "EqualizationMethod",
          "TwistAndRescaleMethod", "ErrorMode"])
def test_yaml_round_trip(logging_mixin, dump_to_string_and_retrieve, obj):
    """ Integrations tests for writing to and reading from YAML. """
    # Setup
    # YAML object
    y = yaml.yaml(modules_to_register = [params])
    logger.debug(f"obj: {obj}")

    # Dump and retrieve the object.
    result_obj = dump_to_string_and_retrieve(input_object = obj, y = y)

    # Check that the objects are the same.
    assert obj == result_obj

def test_enum_from_yaml_tag(logging_mixin):
    """ Test constructing the enums from tags written by hand in a configuration file. """
    # Setup
    y = yaml.yaml(modules_to_register = [params])
    s = StringIO()
    s.write("normalization: !NormalizationMethod q_over_sqrt_m\nstep: !CorrectionStep twist\n")
    s.seek(0)
    obj = y.load(s)

    assert obj["normalization"] == params.NormalizationMethod.q_over_sqrt_m
    assert obj["step"] == params.CorrectionStep.twist
