#!/usr/bin/env python

""" Multi-pass calibration of toy flow events.

Each pass over the (identical) toy events uses the calibration histograms of the previous pass, so
the corrections are progressively enabled until all requested corrections are applied.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

from dataclasses import dataclass, field
import logging
import numpy as np
from typing import Any, Dict, List, Optional

from qn_corrections.base import analysis_config
from qn_corrections.base import analysis_manager
from qn_corrections.base import histograms
from qn_corrections.base import params
from qn_corrections.corrections.manager import CorrectionManager, UNSET_VARIABLE_VALUE
from qn_corrections.toy_models import flow_events

logger = logging.getLogger(__name__)

@dataclass
class PassSummary:
    """ Summary of a single pass over the data.

    Attributes:
        pass_number: Pass over the data (0 indexed).
        n_events: Number of processed events.
        last_steps: Last applied step for each configuration, in the final event.
        mean_qx: Average Qx after the last applied step, for each configuration and harmonic.
        mean_qy: Average Qy after the last applied step, for each configuration and harmonic.
    """
    pass_number: int
    n_events: int = 0
    last_steps: Dict[str, params.CorrectionStep] = field(default_factory = dict)
    mean_qx: Dict[str, Dict[int, float]] = field(default_factory = dict)
    mean_qy: Dict[str, Dict[int, float]] = field(default_factory = dict)

class ToyCalibration(analysis_manager.Manager):
    """ Calibrate the Qn vectors of toy events over several passes.

    Args:
        config_filename: Path to the configuration filename.

    Attributes:
        n_events: Number of events per pass.
        n_passes: Number of passes over the events.
        label: Label of the calibration histograms.
        generator: Toy event generator.
        detectors: Toy detectors, keyed by name.
        variable_ids: Map from variable name to index in the event variable vector.
        calibration_histograms: Calibration histograms from the last pass.
        summaries: Summary of each pass.
        correction_manager: Correction manager of the last pass.
    """
    def __init__(self, config_filename: str, **kwargs: Any):
        super().__init__(config_filename = config_filename, manager_task_name = "toyCalibration", **kwargs)

        self.n_events = int(self.task_config["n_events"])
        self.n_passes = int(self.task_config["n_passes"])
        self.label = str(self.task_config.get("label", "allData"))
        self.n_variables = int(self.task_config.get("n_variables", 100))
        self.fill_qa_histograms = bool(self.task_config.get("fill_qa_histograms", False))
        generator_config = self.task_config.get("generator", {})
        self.generator = flow_events.FlowEventGenerator(
            flow_coefficients = {int(k): float(v) for k, v in generator_config.get("flow_coefficients", {2: 0.1}).items()},
            multiplicity_range = tuple(generator_config.get("multiplicity_range", (100, 1000))),  # type: ignore
            random_seed = generator_config.get("random_seed"),
        )
        self.detectors = flow_events.detectors_from_config(self.task_config["detectors"])
        self.variable_ids = {str(k): int(v) for k, v in self.config.get("variables", {}).items()}

        self.calibration_histograms: Optional[histograms.HistogramList] = None
        self.summaries: List[PassSummary] = []
        self.correction_manager: Optional[CorrectionManager] = None

    def _create_correction_manager(self) -> CorrectionManager:
        """ Create the correction manager for a pass, using the calibration histograms of the previous pass. """
        correction_manager = CorrectionManager(
            n_variables = self.n_variables, label = self.label, fill_qa_histograms = self.fill_qa_histograms,
        )
        # The configurations are recreated for each pass, since the framework decides which steps are applied.
        for configuration in analysis_config.detector_configurations_from_config(self.config):
            correction_manager.add_configuration(configuration)
        if self.calibration_histograms is not None:
            correction_manager.set_calibration_histograms(self.calibration_histograms)
        correction_manager.initialize()
        return correction_manager

    def _set_variable(self, correction_manager: CorrectionManager, name: str, value: float) -> None:
        if name in self.variable_ids:
            correction_manager.variables[self.variable_ids[name]] = value

    def _run_pass(self, pass_number: int) -> PassSummary:
        correction_manager = self._create_correction_manager()
        summary = PassSummary(pass_number = pass_number)
        sums: Dict[str, Dict[int, List[complex]]] = {conf.name: {} for conf in correction_manager.registry}

        # Use the same events for each pass.
        self.generator.reset()
        detector_rng = np.random.default_rng(self.generator.random_seed + 1)
        with self.events_counter(total = self.n_events, description = f"Pass {pass_number + 1}:") as processing:
            for event in self.generator(self.n_events):
                self._set_variable(correction_manager, "centrality", event.centrality)
                self._set_variable(correction_manager, "vertex_z", event.vertex_z)
                for detector, index, (phi, weight, channel_id) in \
                        flow_events.iterate_data_vectors(self.detectors.values(), event, detector_rng):
                    eta = detector.particle_eta(event, index)
                    self._set_variable(correction_manager, "eta", eta if eta is not None else UNSET_VARIABLE_VALUE)
                    correction_manager.add_data_vector(detector.name, phi = phi, weight = weight, channel_id = channel_id)
                correction_manager.process()

                for conf in correction_manager.registry:
                    qn_vector = correction_manager.get_qn_vector(conf.name)
                    for h in conf.harmonics:
                        if qn_vector.is_defined(h):
                            sums[conf.name].setdefault(h, []).append(complex(qn_vector.qx(h), qn_vector.qy(h)))
                correction_manager.clear_event()
                summary.n_events += 1
                processing.update()

        for conf in correction_manager.registry:
            summary.last_steps[conf.name] = correction_manager.last_step(conf.name)
            summary.mean_qx[conf.name] = {h: float(np.mean(np.real(values))) for h, values in sums[conf.name].items()}
            summary.mean_qy[conf.name] = {h: float(np.mean(np.imag(values))) for h, values in sums[conf.name].items()}
            logger.info(
                f"Pass {pass_number + 1}, {conf.name}: last step: {summary.last_steps[conf.name]},"
                f" <Qx>: {summary.mean_qx[conf.name]}, <Qy>: {summary.mean_qy[conf.name]}"
            )

        self.calibration_histograms = correction_manager.finalize()
        self.correction_manager = correction_manager
        return summary

    def run(self) -> bool:
        """ Run each pass over the toy events. """
        for pass_number in range(self.n_passes):
            self.summaries.append(self._run_pass(pass_number))
        return True

def run_from_terminal() -> ToyCalibration:
    """ Driver function for running the toy calibration. """
    manager: ToyCalibration = analysis_manager.run_helper(
        manager_class = ToyCalibration, task_name = "Toy calibration",
        description = "Qn vector corrections {task_name}.",
    )

    # Return it for convenience.
    return manager

if __name__ == "__main__":
    run_from_terminal()
