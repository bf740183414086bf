#!/usr/bin/env python

""" Tests for the correction manager, running the framework over several passes of toy events.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
import numpy as np
import pytest

from qn_corrections.base import cuts
from qn_corrections.base import event_classes
from qn_corrections.base import histograms
from qn_corrections.base import params
from qn_corrections.base.detector_configuration import DetectorConfiguration
from qn_corrections.corrections import manager
from qn_corrections.toy_models import flow_events

# Setup logger
logger = logging.getLogger(__name__)

CorrectionStep = params.CorrectionStep

N_EVENTS = 200
SEED = 1234

def _configurations(centrality_axes):
    """ TPC with recentering, and V0 with equalization, recentering and alignment to the TPC. """
    tpc = DetectorConfiguration(
        name = "TPC", detector = "TPC", recentering_axes = centrality_axes,
        corrections = [CorrectionStep.recentering],
    )
    v0 = DetectorConfiguration(
        name = "V0", detector = "V0", recentering_axes = centrality_axes, n_channels = 8,
        corrections = [CorrectionStep.equalization, CorrectionStep.recentering, CorrectionStep.alignment],
        alignment_reference = "TPC",
    )
    return [tpc, v0]

def _twist_configurations(centrality_axes, method):
    """ TPC with recentering, twist and rescaling. The correlations method also requires two partners. """
    partners = None
    if method == params.TwistAndRescaleMethod.correlations:
        partners = ("FWDA", "FWDC")
    configurations = [DetectorConfiguration(
        name = "TPC", detector = "TPC", recentering_axes = centrality_axes,
        corrections = [CorrectionStep.recentering, CorrectionStep.twist, CorrectionStep.rescaling],
        twist_and_rescale_method = method, correlation_partners = partners,
    )]
    if partners is not None:
        configurations.extend(
            DetectorConfiguration(name = name, detector = name, recentering_axes = centrality_axes) for name in partners
        )
    return configurations

def _twist_detectors():
    return [
        flow_events.TrackingDetector("TPC", hole = (0, 1.0)),
        flow_events.TrackingDetector("FWDA", eta_range = (0.9, 2.5)),
        flow_events.TrackingDetector("FWDC", eta_range = (2.8, 5.1)),
    ]

def _run_pass(configurations, input_histograms = None, label = manager.ALL_DATA_LABEL,
              n_events = N_EVENTS, callback = None, detectors = None, flow_coefficients = None):
    """ Run a single pass over the toy events.

    The same events are generated for each pass.

    Args:
        configurations: Detector configurations.
        input_histograms: Calibration histograms from the previous pass.
        label: Label of the pass.
        n_events: Number of events.
        callback: Function called with the manager after each event is processed.
        detectors: Detectors which observe the events. Default: TPC with a hole and an 8 channel V0.
        flow_coefficients: Flow coefficients of the generated events. Default: v2 = 0.1.
    Returns:
        The correction manager, after finalizing the pass.
    """
    correction_manager = manager.CorrectionManager(n_variables = 10, label = label)
    for configuration in configurations:
        correction_manager.add_configuration(configuration)
    if input_histograms is not None:
        correction_manager.set_calibration_histograms(input_histograms)
    correction_manager.initialize()

    generator = flow_events.FlowEventGenerator(
        flow_coefficients = flow_coefficients if flow_coefficients is not None else {2: 0.1},
        multiplicity_range = (200, 400), random_seed = SEED,
    )
    if detectors is None:
        detectors = [
            flow_events.TrackingDetector("TPC", hole = (0, 1.0)),
            flow_events.ChannelizedDetector("V0", n_channels = 8, gains = [1, 1.5, 1, 0.8, 1, 1.2, 1, 1]),
        ]
    detector_rng = np.random.default_rng(SEED + 1)
    for event in generator(n_events):
        correction_manager.variables[0] = event.centrality
        for detector, _, (phi, weight, channel_id) in flow_events.iterate_data_vectors(detectors, event, detector_rng):
            correction_manager.add_data_vector(detector.name, phi = phi, weight = weight, channel_id = channel_id)
        correction_manager.process()
        if callback:
            callback(correction_manager)
        correction_manager.clear_event()

    correction_manager.finalize()
    return correction_manager

def _run_passes(n_passes, centrality_axes):
    """ Run several passes, with each pass using the calibration histograms of the previous pass. """
    managers = []
    input_histograms = None
    for _ in range(n_passes):
        correction_manager = _run_pass(_configurations(centrality_axes), input_histograms = input_histograms)
        input_histograms = correction_manager.calibration_histograms
        managers.append(correction_manager)
    return managers

def test_graceful_degradation(logging_mixin, centrality_axes):
    """ Test that a step without calibration histograms is disabled along with the later steps. """
    _, second_pass = _run_passes(2, centrality_axes)

    v0 = second_pass.get_configuration("V0")
    assert v0.is_apply_correction(CorrectionStep.equalization)
    assert not v0.is_apply_correction(CorrectionStep.recentering)
    assert v0.is_fill_histogram(CorrectionStep.recentering)
    assert not v0.is_apply_correction(CorrectionStep.alignment)
    assert not v0.is_fill_histogram(CorrectionStep.alignment)
    # The TPC recentering was collected in the first pass.
    assert second_pass.get_configuration("TPC").is_apply_correction(CorrectionStep.recentering)

    assert second_pass.passes_required == 3
    assert second_pass.correction_step == 1

@pytest.mark.parametrize("n_passes, expected_step, expected_last_step", [
    (1, 0, CorrectionStep.raw),
    (2, 1, CorrectionStep.equalization),
    (3, 2, CorrectionStep.recentering),
    (4, 3, CorrectionStep.alignment),
], ids = ["First pass", "Second pass", "Third pass", "Fourth pass"])
def test_pass_progression(logging_mixin, centrality_axes, n_passes, expected_step, expected_last_step):
    """ Test that each pass enables the next correction step. """
    correction_manager = _run_passes(n_passes, centrality_axes)[-1]

    assert correction_manager.correction_step == expected_step
    # Determined from the last event.
    assert correction_manager.last_step("V0") == expected_last_step

def test_all_events_fill_the_average(logging_mixin, centrality_axes):
    """ Test that every event with data vectors enters the average Qn vector. """
    correction_manager = _run_pass(_configurations(centrality_axes))
    hist_list = correction_manager.calibration_histograms.find(manager.ALL_DATA_LABEL)

    entries = hist_list.find("TPCMeanQXY_entries")
    assert entries.entries == N_EVENTS
    assert np.sum(entries.values) == N_EVENTS
    # The equalization doesn't have its calibration yet, so the V0 average isn't filled.
    assert hist_list.find("V0MeanQXY_entries").entries == 0
    assert hist_list.find("V0Mult_entries").entries > 0

def test_recentering_removes_average(logging_mixin, centrality_axes):
    """ Test that recentering the same events which were used for the calibration yields a vanishing average. """
    first_pass = _run_pass(_configurations(centrality_axes))

    recentered = []

    def record(correction_manager):
        qn_vector = correction_manager.get_qn_vector("TPC")
        assert correction_manager.last_step("TPC") == CorrectionStep.recentering
        recentered.append([qn_vector.qx(1), qn_vector.qy(1), qn_vector.qx(2), qn_vector.qy(2)])

    _run_pass(_configurations(centrality_axes), input_histograms = first_pass.calibration_histograms, callback = record)

    assert len(recentered) == N_EVENTS
    assert np.allclose(np.mean(recentered, axis = 0), 0, atol = 1e-6)

def test_status_is_monotonic(logging_mixin, centrality_axes):
    """ Test that the status of each step follows the correction sequence. """
    *_, last_pass = _run_passes(3, centrality_axes)
    statuses = []

    def record(correction_manager):
        statuses.append([correction_manager.get_qn_vector("V0", step).status(2) for step in params.CorrectionStep])

    _run_pass(_configurations(centrality_axes), input_histograms = last_pass.calibration_histograms,
              n_events = 5, callback = record)

    for event_statuses in statuses:
        defined = [status.value for status in event_statuses if status != params.QnVectorStatus.undefined]
        assert defined == sorted(defined)
        assert event_statuses[CorrectionStep.alignment.value] == params.QnVectorStatus.aligned
        # Twist and rescaling weren't requested.
        assert event_statuses[CorrectionStep.rescaling.value] == params.QnVectorStatus.undefined

def test_empty_detector(logging_mixin, centrality_axes):
    """ Test that a detector without data vectors leaves its Qn vector undefined. """
    correction_manager = manager.CorrectionManager(n_variables = 10)
    for configuration in _configurations(centrality_axes):
        correction_manager.add_configuration(configuration)
    correction_manager.variables[0] = 15
    correction_manager.add_data_vector("TPC", phi = 0.5)
    correction_manager.add_data_vector("TPC", phi = 1.5)
    correction_manager.process()

    v0 = correction_manager.get_qn_vector("V0")
    assert all(not v0.is_defined(h) for h in range(1, v0.max_harmonic + 1))
    assert correction_manager.last_step("V0") == CorrectionStep.raw
    tpc = correction_manager.get_qn_vector("TPC")
    assert tpc.status(1) == params.QnVectorStatus.raw
    assert tpc.n == 2

    correction_manager.clear_event()
    assert len(correction_manager.data_vectors("TPC")) == 0
    assert correction_manager.variables[0] == manager.UNSET_VARIABLE_VALUE

def test_data_vector_selection(logging_mixin, centrality_axes):
    """ Test the cuts and used channels when adding data vectors. """
    correction_manager = manager.CorrectionManager(n_variables = 10)
    correction_manager.add_configuration(DetectorConfiguration(
        name = "TPCEtaGap", detector = "TPC", recentering_axes = centrality_axes,
        cuts = cuts.Cuts([cuts.CutOutside(2, -0.4, 0.4)]),
    ))
    correction_manager.add_configuration(DetectorConfiguration(
        name = "TPC", detector = "TPC", recentering_axes = centrality_axes,
    ))
    correction_manager.add_configuration(DetectorConfiguration(
        name = "V0", detector = "V0", recentering_axes = centrality_axes, n_channels = 4,
        used_channels = [True, False, True, True],
    ))

    for eta in [-0.7, -0.1, 0.2, 0.6]:
        correction_manager.variables[2] = eta
        correction_manager.add_data_vector("TPC", phi = 1.0)
    for channel in range(4):
        correction_manager.add_data_vector("V0", phi = 1.0, weight = 2.0, channel_id = channel)

    assert len(correction_manager.data_vectors("TPCEtaGap")) == 2
    assert len(correction_manager.data_vectors("TPC")) == 4
    assert [dv.channel_id for dv in correction_manager.data_vectors("V0")] == [0, 2, 3]

def test_framework_information(logging_mixin, centrality_axes):
    """ Test the summary table of the applied and filled steps. """
    correction_manager = manager.CorrectionManager(n_variables = 10)
    correction_manager.add_configuration(_configurations(centrality_axes)[0])
    correction_manager.initialize()

    lines = correction_manager.framework_information()
    assert lines[1] == "FLOW VECTOR FRAMEWORK - PASS 1/2"
    assert lines[2].split("|")[1].strip() == "TPC"
    assert lines[4] == "CORRECTIONS"
    # Recentering is requested, but can only be applied in the next pass.
    assert lines[6].split("|")[0].strip() == "Recentering"
    assert lines[6].split("|")[1].strip() == "0"
    assert lines[7].split("|")[1].strip() == "-"
    assert lines[10] == "FILL HISTS"
    assert lines[12].split("|")[1].strip() == "x"

def test_label_fallback(logging_mixin, centrality_axes):
    """ Test that the calibration histograms of all data are used when the label isn't available. """
    first_pass = _run_pass(_configurations(centrality_axes)[:1], label = "run1", n_events = 50)
    hist_list = first_pass.calibration_histograms
    assert "run1" in hist_list
    assert manager.ALL_DATA_LABEL in hist_list

    for input_histograms in [hist_list, hist_list.find(manager.ALL_DATA_LABEL)]:
        correction_manager = manager.CorrectionManager(n_variables = 10, label = "run2")
        correction_manager.add_configuration(_configurations(centrality_axes)[0])
        correction_manager.set_calibration_histograms(input_histograms)
        correction_manager.initialize()
        assert correction_manager.get_configuration("TPC").is_apply_correction(CorrectionStep.recentering)

def test_unknown_alignment_reference(logging_mixin, centrality_axes):
    """ Test that referring to an unregistered configuration fails at initialization. """
    correction_manager = manager.CorrectionManager()
    correction_manager.add_configuration(_configurations(centrality_axes)[1])
    with pytest.raises(ValueError):
        correction_manager.initialize()

def test_invalid_usage(logging_mixin, centrality_axes):
    """ Test the framework lifecycle errors. """
    correction_manager = manager.CorrectionManager()
    with pytest.raises(RuntimeError):
        correction_manager.initialize()
    with pytest.raises(RuntimeError):
        correction_manager.finalize()

    tpc, _ = _configurations(centrality_axes)
    correction_manager.add_configuration(tpc)
    correction_manager.initialize()
    with pytest.raises(RuntimeError):
        correction_manager.add_configuration(DetectorConfiguration(name = "other", detector = "other",
                                                                   recentering_axes = centrality_axes))
    with pytest.raises(KeyError):
        correction_manager.get_qn_vector("missing")

def test_configuration_reused_across_managers(logging_mixin, centrality_axes):
    """ Test that a configuration disabled in one pass applies its steps again with the next manager. """
    tpc, _ = _configurations(centrality_axes)
    first_pass = _run_pass([tpc], n_events = 50)
    assert not tpc.is_apply_correction(CorrectionStep.recentering)

    second_pass = _run_pass([tpc], input_histograms = first_pass.calibration_histograms, n_events = 50)

    assert tpc.is_apply_correction(CorrectionStep.recentering)
    assert second_pass.correction_step == 1
    assert second_pass.last_step("TPC") == CorrectionStep.recentering

@pytest.mark.parametrize("method, expected_passes", [
    (params.TwistAndRescaleMethod.double_harmonic, 1),
    (params.TwistAndRescaleMethod.u2n, 2),
    (params.TwistAndRescaleMethod.correlations, 2),
], ids = ["Double harmonic", "u2n", "Correlations"])
def test_twist_and_rescale_passes(logging_mixin, centrality_axes, method, expected_passes):
    """ Test that the twist and rescaling are applied once their calibration has been collected. """
    run_options = dict(n_events = 100, detectors = _twist_detectors(), flow_coefficients = {2: 0.2})
    input_histograms = None
    for _ in range(expected_passes):
        previous_pass = _run_pass(_twist_configurations(centrality_axes, method), input_histograms = input_histograms,
                                  **run_options)
        # The rescaling can't be applied yet.
        assert previous_pass.correction_step < expected_passes
        input_histograms = previous_pass.calibration_histograms

    components = []

    def record(correction_manager):
        assert correction_manager.last_step("TPC") == CorrectionStep.rescaling
        recentered = correction_manager.get_qn_vector("TPC", CorrectionStep.recentering)
        rescaled = correction_manager.get_qn_vector("TPC")
        assert rescaled.status(2) == params.QnVectorStatus.rescaled
        components.append([recentered.qx(2), recentered.qy(2), rescaled.qx(2), rescaled.qy(2)])

    last_pass = _run_pass(_twist_configurations(centrality_axes, method), input_histograms = input_histograms,
                          callback = record, **run_options)

    assert last_pass.passes_required == expected_passes
    assert last_pass.correction_step == expected_passes
    assert len(components) == 100
    components = np.array(components)
    assert np.all(np.isfinite(components))
    assert not np.allclose(components[:, :2], components[:, 2:])

def test_uniform_events_have_vanishing_average(logging_mixin):
    """ Test that the average Qn vector of isotropic events is compatible with zero in every event class. """
    axes = event_classes.EventClassAxes(dimension = 1, name = "centrality")
    axes.set_axis(0, variable_id = 0, bin_edges = [0, 10, 20, 30], label = "Centrality (%)")
    correction_manager = manager.CorrectionManager(n_variables = 10)
    correction_manager.add_configuration(DetectorConfiguration(
        name = "TPC", detector = "TPC", recentering_axes = axes, corrections = [CorrectionStep.recentering],
    ))
    correction_manager.initialize()

    n_events = 1000
    rng = np.random.default_rng(SEED)
    for _ in range(n_events):
        correction_manager.variables[0] = rng.uniform(0, 30)
        for phi in rng.uniform(0, 2 * np.pi, size = 50):
            correction_manager.add_data_vector("TPC", phi = phi)
        correction_manager.process()
        # The recentering calibration isn't available yet.
        assert correction_manager.last_step("TPC") == CorrectionStep.raw
        correction_manager.clear_event()
    hist_list = correction_manager.finalize().find(manager.ALL_DATA_LABEL)

    mean_q = histograms.ComponentsProfile("TPCMeanQ", "TPC average Qn vector", axes)
    assert mean_q.attach_histograms(hist_list, harmonics = [1, 2])
    assert np.sum(mean_q.entries_histogram.values) == n_events
    for centrality in [5, 15, 25]:
        bin = mean_q.get_bin([centrality] + [0] * 9)
        assert bin >= 0
        for h in [1, 2]:
            assert abs(mean_q.get_x_bin_content(h, bin)) < 4 * mean_q.get_x_bin_error(h, bin)
            assert abs(mean_q.get_y_bin_content(h, bin)) < 4 * mean_q.get_y_bin_error(h, bin)

def test_correlation_partners_without_common_harmonic(logging_mixin, centrality_axes):
    """ Test that correlated configurations are required to share a harmonic. """
    correction_manager = manager.CorrectionManager(n_variables = 10)
    correction_manager.add_configuration(DetectorConfiguration(
        name = "TPC", detector = "TPC", recentering_axes = centrality_axes,
        corrections = [CorrectionStep.twist, CorrectionStep.rescaling],
        twist_and_rescale_method = params.TwistAndRescaleMethod.correlations, correlation_partners = ("V0A", "V0C"),
    ))
    correction_manager.add_configuration(DetectorConfiguration(
        name = "V0A", detector = "V0A", recentering_axes = centrality_axes, min_harmonic = 3, max_harmonic = 4,
    ))
    with pytest.raises(ValueError, match = "between TPC .* and V0A"):
        correction_manager.add_configuration(DetectorConfiguration(
            name = "V0C", detector = "V0C", recentering_axes = centrality_axes,
        ))
