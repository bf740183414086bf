#!/usr/bin/env python

""" Tests for the multi-pass toy calibration.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
import pytest

from qn_corrections.analysis import toy_calibration
from qn_corrections.base import params

# Setup logger
logger = logging.getLogger(__name__)

CONFIG = """
variables:
    centrality: 0
    vertex_z: 1
    eta: 2
eventClasses:
    centrality:
        - variable: "centrality"
          label: "Centrality (%)"
          bins: [0, 20, 40, 80]
configurations:
    TPC:
        detector: "TPC"
        max_harmonic: 2
        corrections: ["recentering"]
        event_classes: "centrality"
    V0:
        detector: "V0"
        max_harmonic: 2
        n_channels: 8
        corrections: ["equalization", "recentering"]
        event_classes: "centrality"
toyCalibration:
    n_events: 100
    n_passes: {n_passes}
    n_variables: 10
    fill_qa_histograms: true
    generator:
        flow_coefficients: {{2: 0.1}}
        multiplicity_range: [200, 400]
        random_seed: 1234
    detectors:
        TPC:
            type: "tracking"
            hole: [0, 1.0]
        V0:
            type: "channelized"
            n_channels: 8
            gains: [1, 1.5, 1, 0.8, 1, 1.2, 1, 1]
"""

@pytest.fixture
def toy_config(tmp_path):
    """ Write the toy configuration for the given number of passes. """
    def func(n_passes):
        filename = tmp_path / "config.yaml"
        filename.write_text(CONFIG.format(n_passes = n_passes))
        return str(filename)
    return func

def test_toy_calibration(logging_mixin, toy_config):
    """ Test running the full set of passes. """
    task = toy_calibration.ToyCalibration(config_filename = toy_config(3))
    assert task._run() is True

    assert [summary.pass_number for summary in task.summaries] == [0, 1, 2]
    assert all(summary.n_events == 100 for summary in task.summaries)
    assert [summary.last_steps["V0"] for summary in task.summaries] == [
        params.CorrectionStep.raw, params.CorrectionStep.equalization, params.CorrectionStep.recentering,
    ]
    assert task.summaries[-1].last_steps["TPC"] == params.CorrectionStep.recentering
    # The TPC acceptance hole leads to a sizable average Qn vector, which is removed by the recentering.
    first, *_, last = task.summaries
    assert abs(last.mean_qx["TPC"][1]) < abs(first.mean_qx["TPC"][1])
    assert abs(last.mean_qx["TPC"][1]) < 1e-6

    assert task.correction_manager is not None
    assert task.correction_manager.correction_step == 2
    assert task.correction_manager.passes_required == 2
    assert task.calibration_histograms is not None
    assert "allData" in task.calibration_histograms
    assert len(task.correction_manager.qa_histograms.find("allData")) > 0

def test_single_pass(logging_mixin, toy_config):
    """ Test that a single pass only fills the calibration histograms. """
    task = toy_calibration.ToyCalibration(config_filename = toy_config(1))
    task.run()

    summary, = task.summaries
    assert summary.last_steps == {"TPC": params.CorrectionStep.raw, "V0": params.CorrectionStep.raw}
    hist_list = task.calibration_histograms.find("allData")
    assert hist_list.find("TPCMeanQXY_entries").entries == 100
