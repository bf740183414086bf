#!/usr/bin/env python

""" Manager of the Qn vector corrections framework.

The manager owns the detector configurations, their data vectors, Qn vectors and calibration
histograms. For each event, the user fills the event variable vector, adds the data vectors of each
detector, and then calls ``process()``, which builds the Qn vectors, applies the available
corrections and fills the calibration histograms for the next pass over the data. The corrected Qn
vectors can then be retrieved before calling ``clear_event()``.

Each correction step requires calibration histograms which were filled in a previous pass over the
data, so the full set of corrections is reached after several passes. The steps whose calibration
histograms are missing are disabled (together with the steps which depend on them), and their
histograms are filled instead.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import logging
import numpy as np
from typing import Dict, Hashable, List, Optional, Sequence

from qn_corrections.base import histograms
from qn_corrections.base import params
from qn_corrections.base.detector_configuration import DetectorConfiguration, DetectorRegistry
from qn_corrections.base.qn_vector import DataVector, QnVector, equalized_weight_selector, raw_weight
from qn_corrections.corrections import steps
from qn_corrections.corrections.calibration_histograms import CalibrationHistograms, common_harmonics

logger = logging.getLogger(__name__)

# Label of the calibration histograms which aren't specific to any run.
ALL_DATA_LABEL = "allData"
# Value of the event variables which haven't been set for the current event.
UNSET_VARIABLE_VALUE = -999.0

class CorrectionManager:
    """ Drives the building and correction of the Qn vectors.

    Args:
        n_variables: Size of the event variable vector.
        label: Label of the data being processed (for example, the run number). Calibration histograms
            with this label are preferred as input, falling back to those of all data.
        fill_calibration_histograms: If True, fill the calibration histograms for the next pass.
        fill_qa_histograms: If True, fill the QA histograms.

    Attributes:
        registry: Registered detector configurations.
        variables: Event variable vector. Filled by the user for each event.
        label: Label of the data being processed.
        fill_calibration_histograms: Whether to fill the calibration histograms.
        fill_qa_histograms: Whether to fill the QA histograms.
        correction_step: Pass over the data which is being performed (0 indexed).
        passes_required: Number of additional passes required to reach all of the requested corrections.
        calibration_histograms: Output calibration histograms, stored in a list per label.
        qa_histograms: Output QA histograms, stored in a list per label.
    """
    def __init__(self, n_variables: int = 100, label: str = ALL_DATA_LABEL,
                 fill_calibration_histograms: bool = True, fill_qa_histograms: bool = False):
        self.registry = DetectorRegistry()
        self.variables = np.full(n_variables, UNSET_VARIABLE_VALUE)
        self.label = label
        self.fill_calibration_histograms = fill_calibration_histograms
        self.fill_qa_histograms = fill_qa_histograms
        self.correction_step = 0
        self.passes_required = 0
        self.calibration_histograms = histograms.HistogramList("CalibrationHistograms")
        self.qa_histograms = histograms.HistogramList("CalibrationHistogramsQA")

        self._input_histogram_list: Optional[histograms.HistogramList] = None
        # Per configuration state, indexed by the configuration global index.
        self._input_histograms: List[CalibrationHistograms] = []
        self._output_histograms: List[CalibrationHistograms] = []
        self._data_vectors: List[List[DataVector]] = []
        self._qn_vectors: List[Dict[params.CorrectionStep, QnVector]] = []
        self._last_step: List[params.CorrectionStep] = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def add_configuration(self, configuration: DetectorConfiguration) -> int:
        """ Add a detector configuration.

        Args:
            configuration: Detector configuration.
        Returns:
            Global index of the configuration.
        """
        if self._initialized:
            raise RuntimeError(f"Cannot add configuration {configuration.name} after the framework was initialized.")
        configuration.lower_min_harmonic_for_alignment()
        global_index = self.registry.register(configuration)
        self._check_correlation_harmonics()
        return global_index

    def _check_correlation_harmonics(self) -> None:
        """ Check that each pair of correlated configurations shares at least one harmonic.

        Only the configurations whose correlation partners are all registered can be checked.
        """
        for conf in self.registry:
            if conf.correlation_partners is None or not conf.requests_twist_or_rescaling \
                    or conf.twist_and_rescale_method != params.TwistAndRescaleMethod.correlations:
                continue
            b, c = [self.registry.find(name) for name in conf.correlation_partners]
            if b is None or c is None:
                continue
            for first, second in [(conf, b), (b, c), (c, conf)]:
                if not common_harmonics(first, second):
                    raise ValueError(
                        f"The correlations of {conf.name} require a common harmonic between {first.name}"
                        f" (harmonics {first.harmonics}) and {second.name} (harmonics {second.harmonics})"
                    )

    def get_configuration(self, name: str) -> DetectorConfiguration:
        configuration = self.registry.find(name)
        if configuration is None:
            raise KeyError(name, f"Configuration {name} is not registered.")
        return configuration

    def set_calibration_histograms(self, histogram_list: histograms.HistogramList) -> None:
        """ Set the calibration histograms from the previous pass.

        Args:
            histogram_list: Calibration histograms. Usually contains a list per label, as produced by
                ``finalize()``, but the histograms can also be stored directly.
        Returns:
            None.
        """
        if self._initialized:
            raise RuntimeError("Calibration histograms must be set before the framework is initialized.")
        self._input_histogram_list = histogram_list

    def _input_list_with_label(self) -> histograms.HistogramList:
        if self._input_histogram_list is None:
            return histograms.HistogramList(self.label)
        for label in [self.label, ALL_DATA_LABEL]:
            histogram_list = self._input_histogram_list.find(label)
            if isinstance(histogram_list, histograms.HistogramList):
                logger.debug(f"Using calibration histograms with label {label}")
                return histogram_list
        return self._input_histogram_list

    def _resolve_configuration_index(self, configuration: DetectorConfiguration, name: str) -> int:
        try:
            return self.registry.index_of(name)
        except KeyError as e:
            raise ValueError(f"Configuration {configuration.name} refers to the unknown configuration {name}") from e

    def initialize(self) -> None:
        """ Initialize the framework.

        Resolves the references between configurations, creates the output histograms, allocates the
        Qn vectors and attaches the available calibration histograms. It is called automatically when
        the first data vector is added, if it wasn't called explicitly.
        """
        if self._initialized:
            return
        if len(self.registry) == 0:
            raise RuntimeError("No detector configurations were added.")

        for conf in self.registry:
            if conf.is_requested_correction(params.CorrectionStep.alignment):
                conf.alignment_reference_index = self._resolve_configuration_index(conf, conf.alignment_reference)  # type: ignore
                reference = self.registry[conf.alignment_reference_index]
                if conf.alignment_harmonic > reference.q_vector_harmonic_limit:
                    raise ValueError(
                        f"Alignment harmonic {conf.alignment_harmonic} of {conf.name} isn't built by the reference {reference.name}"
                    )
            if conf.correlation_partners is not None:
                b, c = conf.correlation_partners
                conf.correlation_partner_indices = (
                    self._resolve_configuration_index(conf, b), self._resolve_configuration_index(conf, c),
                )

        output_list = histograms.HistogramList(self.label)
        self.calibration_histograms.add(output_list)
        qa_list = histograms.HistogramList(self.label)
        self.qa_histograms.add(qa_list)
        for conf in self.registry:
            output = CalibrationHistograms(conf)
            partners = None
            if conf.correlation_partners is not None:
                b_index, c_index = conf.correlation_partner_indices
                partners = (self.registry[b_index], self.registry[c_index])
            output.create(output_list, partners = partners)
            if self.fill_qa_histograms:
                output.create_qa(qa_list)
            self._output_histograms.append(output)
            self._input_histograms.append(CalibrationHistograms(conf))
            self._data_vectors.append([])
            self._qn_vectors.append({
                step: QnVector(conf.q_vector_harmonic_limit, name = f"{conf.name}{step.display_str()}")
                for step in params.CorrectionStep
            })
            self._last_step.append(params.CorrectionStep.raw)

        self._initialize_calibration_histograms()
        self._initialized = True
        self._log_framework_information()

    def _initialize_calibration_histograms(self) -> None:
        """ Attach the calibration histograms, disabling the steps which can't be applied. """
        # A configuration may have been degraded by a previous pass with a different manager.
        for conf in self.registry:
            conf.reset_steps()
        pass_stages = sorted(
            {stage for conf in self.registry for stage in conf.pass_stages()}, key = lambda stage: stage.value
        )
        self.passes_required = len(pass_stages)
        self.correction_step = self.passes_required

        histogram_list = self._input_list_with_label()
        for conf, inputs in zip(self.registry, self._input_histograms):
            attach_functions = [
                (params.CorrectionStep.equalization, conf.is_requested_correction(params.CorrectionStep.equalization),
                 inputs.attach_equalization),
                (params.CorrectionStep.recentering, conf.is_requested_correction(params.CorrectionStep.recentering),
                 inputs.attach_recentering),
                (params.CorrectionStep.alignment, conf.is_requested_correction(params.CorrectionStep.alignment),
                 inputs.attach_alignment),
                (params.CorrectionStep.twist, conf.requests_twist_or_rescaling, inputs.attach_twist_and_rescale),
            ]
            for step, requested, attach in attach_functions:
                if not requested:
                    continue
                # Skip steps which were already disabled because of an earlier step.
                if not self._is_apply_stage(conf, step):
                    continue
                if attach(histogram_list):
                    logger.debug(f"Attached the {step} calibration histograms of {conf.name}")
                    continue
                logger.warning(
                    f"Calibration histograms for the {step} of {conf.name} are not available."
                    f" Disabling it and the following steps for this pass."
                )
                conf.disable_from(step)
                self.correction_step = min(
                    self.correction_step, len([stage for stage in pass_stages if stage.value < step.value])
                )

    @staticmethod
    def _is_apply_stage(conf: DetectorConfiguration, step: params.CorrectionStep) -> bool:
        if step == params.CorrectionStep.twist:
            return conf.is_apply_correction(params.CorrectionStep.twist) or conf.is_apply_correction(params.CorrectionStep.rescaling)
        return conf.is_apply_correction(step)

    @staticmethod
    def _is_fill_stage(conf: DetectorConfiguration, step: params.CorrectionStep) -> bool:
        if step == params.CorrectionStep.twist:
            return conf.is_fill_histogram(params.CorrectionStep.twist) or conf.is_fill_histogram(params.CorrectionStep.rescaling)
        return conf.is_fill_histogram(step)

    def framework_information(self) -> List[str]:
        """ Table summarizing the steps which are applied and filled for each configuration. """
        width = 18
        separator = "-" * (width + 3) * (len(self.registry) + 1)

        def row(label: str, values: Sequence[str]) -> str:
            return f"{label:>{width}} |" + "".join(f"{value:>{width}} |" for value in values)

        def symbol(active: bool, requested: bool) -> str:
            return "x" if active else ("0" if requested else "-")

        lines = [
            separator,
            f"FLOW VECTOR FRAMEWORK - PASS {self.correction_step + 1}/{self.passes_required + 1}",
            row("", [conf.name for conf in self.registry]),
            separator,
            "CORRECTIONS",
        ]
        for step in params.CorrectionStep.corrections():
            lines.append(row(step.display_str(), [
                symbol(conf.is_apply_correction(step), conf.is_requested_correction(step)) for conf in self.registry
            ]))
        lines.append("FILL HISTS")
        for step in params.CorrectionStep.corrections():
            lines.append(row(step.display_str(), [
                symbol(conf.is_fill_histogram(step), conf.is_requested_fill_histogram(step)) for conf in self.registry
            ]))
        lines.extend([
            separator,
            row("Legend", ["x: this pass", "0: future pass", "-: N/A"]),
            separator,
        ])
        return lines

    def _log_framework_information(self) -> None:
        logger.info("\n".join(self.framework_information()))

    def add_data_vector(self, detector: Hashable, phi: float, weight: float = 1.0, channel_id: int = -1) -> None:
        """ Add a data vector to each configuration of the detector.

        The data vector is only added to the configurations for which the current variable vector
        passes the cuts and which use the channel.

        Args:
            detector: Key of the detector.
            phi: Azimuthal angle.
            weight: Weight of the data vector.
            channel_id: Detector channel. -1 for detectors which aren't channelized.
        Returns:
            None.
        """
        if not self._initialized:
            self.initialize()
        for conf in self.registry.configurations_for_detector(detector):
            if not conf.passes_cuts(self.variables):
                continue
            if not conf.use_channel(channel_id):
                continue
            self._data_vectors[conf.global_index].append(DataVector(phi = phi, weight = weight, channel_id = channel_id))

    def data_vectors(self, name: str) -> List[DataVector]:
        """ Data vectors of the configuration for the current event. """
        return self._data_vectors[self.get_configuration(name).global_index]

    def process(self) -> None:
        """ Build and correct the Qn vectors of the current event, and fill the histograms. """
        if not self._initialized:
            self.initialize()

        # Each step is performed for all configurations before moving to the next step, so the
        # alignment references and correlation partners are always available.
        active = []
        for conf in self.registry:
            for qn_vector in self._qn_vectors[conf.global_index].values():
                qn_vector.reset()
            if self._build_qn_vector(conf, params.CorrectionStep.raw):
                active.append(conf)
            else:
                logger.debug(f"Configuration {conf.name} has no data vectors in this event.")

        for conf in active:
            if conf.is_apply_correction(params.CorrectionStep.equalization):
                self._equalize(conf)
        for conf in active:
            if conf.is_apply_correction(params.CorrectionStep.recentering):
                self._recenter(conf)
        for conf in active:
            if conf.is_apply_correction(params.CorrectionStep.alignment):
                self._align(conf)
        for conf in active:
            if self._is_apply_stage(conf, params.CorrectionStep.twist):
                self._twist_and_rescale(conf)

        if self.fill_calibration_histograms:
            for conf in self.registry:
                self._fill_calibration_histograms(conf)
        if self.fill_qa_histograms:
            for conf in self.registry:
                self._fill_qa_histograms(conf)

    def clear_event(self) -> None:
        """ Clear the data vectors and the event variables, in preparation for the next event. """
        for data_vectors in self._data_vectors:
            data_vectors.clear()
        self.variables[:] = UNSET_VARIABLE_VALUE

    def get_qn_vector(self, name: str, step: Optional[params.CorrectionStep] = None) -> QnVector:
        """ Retrieve a Qn vector of the current event.

        Args:
            name: Name of the configuration.
            step: Step after which the vector is retrieved. Default: the last step which was applied.
        Returns:
            The Qn vector.
        """
        index = self.get_configuration(name).global_index
        if step is None:
            step = self._last_step[index]
        return self._qn_vectors[index][step]

    def last_step(self, name: str) -> params.CorrectionStep:
        return self._last_step[self.get_configuration(name).global_index]

    def _current_qn_vector(self, index: int) -> QnVector:
        return self._qn_vectors[index][self._last_step[index]]

    def _qn_vector_before(self, conf: DetectorConfiguration, step: params.CorrectionStep) -> QnVector:
        """ Qn vector after the last applied step which precedes the given step. """
        previous = [
            s for s in params.CorrectionStep
            if s.value < step.value and s != params.CorrectionStep.rescaling and conf.is_apply_correction(s)
        ]
        return self._qn_vectors[conf.global_index][previous[-1]]

    def _build_qn_vector(self, conf: DetectorConfiguration, step: params.CorrectionStep) -> bool:
        """ Build the Qn vector from the data vectors.

        Args:
            conf: Detector configuration.
            step: ``raw`` to use the raw weights or ``equalization`` to use the equalized weights.
        Returns:
            False if there were no data vectors, in which case the harmonics are left undefined.
        """
        index = conf.global_index
        qn_vector = self._qn_vectors[index][step]
        qn_vector.reset()
        weight_selector = raw_weight
        if step == params.CorrectionStep.equalization:
            weight_selector = equalized_weight_selector(conf.equalization_method)
        qn_vector.fill_from_data_vectors(self._data_vectors[index], weight_selector)
        self._last_step[index] = step

        if qn_vector.n == 0:
            return False
        qn_vector.set_all_statuses(step.status, conf.built_harmonics)
        qn_vector.normalize(conf.normalization)
        return True

    def _equalize(self, conf: DetectorConfiguration) -> None:
        inputs = self._input_histograms[conf.global_index]
        assert inputs.multiplicity is not None
        steps.equalize_data_vector_weights(
            self._data_vectors[conf.global_index], inputs.multiplicity, self.variables,
            group_profile = inputs.group_multiplicity,
        )
        self._build_qn_vector(conf, params.CorrectionStep.equalization)

    def _recenter(self, conf: DetectorConfiguration) -> None:
        index = conf.global_index
        profile = self._input_histograms[index].mean_q
        assert profile is not None
        steps.recenter(
            self._current_qn_vector(index), self._qn_vectors[index][params.CorrectionStep.recentering],
            profile, profile.get_bin(self.variables), conf.harmonics,
            width_equalization = conf.recentering_width_equalization,
        )
        self._last_step[index] = params.CorrectionStep.recentering

    def _align(self, conf: DetectorConfiguration) -> None:
        index = conf.global_index
        profile = self._input_histograms[index].alignment
        assert profile is not None
        steps.align(
            self._current_qn_vector(index), self._qn_vectors[index][params.CorrectionStep.alignment],
            profile, profile.get_bin(self.variables), conf.alignment_harmonic, conf.harmonics,
        )
        self._last_step[index] = params.CorrectionStep.alignment

    def _twist_and_rescale(self, conf: DetectorConfiguration) -> None:
        index = conf.global_index
        inputs = self._input_histograms[index]
        q_in = self._current_qn_vector(index)
        q_twist = self._qn_vectors[index][params.CorrectionStep.twist]
        q_rescale = self._qn_vectors[index][params.CorrectionStep.rescaling]
        apply_twist = conf.is_apply_correction(params.CorrectionStep.twist)
        apply_rescale = conf.is_apply_correction(params.CorrectionStep.rescaling)

        if conf.twist_and_rescale_method == params.TwistAndRescaleMethod.correlations:
            # Only the first twist and rescaling axis is used for the correction.
            correlations = inputs.twist_and_rescale_correlations(axis_index = 0)
            steps.twist_and_rescale_correlations(
                q_in, q_twist, q_rescale, correlations, correlations[0].get_bin(self.variables), conf.harmonics,
                apply_twist = apply_twist, apply_rescale = apply_rescale,
            )
        else:
            # For the double harmonic method, this is the MeanQ profile, binned in the recentering axes.
            profile = inputs.twist_moments
            assert profile is not None
            factor = 2 if conf.twist_and_rescale_method == params.TwistAndRescaleMethod.double_harmonic else 1
            steps.twist_and_rescale_double_harmonic(
                q_in, q_twist, q_rescale, profile, profile.get_bin(self.variables), conf.harmonics,
                apply_twist = apply_twist, apply_rescale = apply_rescale, moment_harmonic_factor = factor,
            )

        if apply_twist:
            self._last_step[index] = params.CorrectionStep.twist
        if apply_rescale:
            self._last_step[index] = params.CorrectionStep.rescaling

    def _fills_mean_q(self, conf: DetectorConfiguration) -> bool:
        if conf.is_fill_histogram(params.CorrectionStep.recentering):
            return True
        return conf.twist_and_rescale_method == params.TwistAndRescaleMethod.double_harmonic \
            and self._is_fill_stage(conf, params.CorrectionStep.twist)

    def _fill_calibration_histograms(self, conf: DetectorConfiguration) -> None:
        index = conf.global_index
        output = self._output_histograms[index]
        data_vectors = self._data_vectors[index]
        variables = self.variables

        if output.multiplicity is not None and conf.is_fill_histogram(params.CorrectionStep.equalization):
            for data_vector in data_vectors:
                output.multiplicity.fill(variables, data_vector.channel_id, data_vector.weight)
                if output.group_multiplicity is not None:
                    output.group_multiplicity.fill(
                        variables, output.multiplicity.channel_group(data_vector.channel_id), data_vector.weight,
                    )

        if output.mean_q is not None and self._fills_mean_q(conf):
            qn_vector = self._qn_vector_before(conf, params.CorrectionStep.recentering)
            harmonics = conf.built_harmonics
            if all(qn_vector.is_defined(h) for h in harmonics):
                for h in harmonics:
                    output.mean_q.fill_x(h, variables, qn_vector.qx(h))
                    output.mean_q.fill_y(h, variables, qn_vector.qy(h))

        if output.u2n is not None and self._is_fill_stage(conf, params.CorrectionStep.twist):
            for data_vector in data_vectors:
                for h in conf.harmonics:
                    output.u2n.fill_x(h, variables, np.cos(2 * h * data_vector.phi))
                    output.u2n.fill_y(h, variables, np.sin(2 * h * data_vector.phi))

        if output.alignment is not None and conf.is_fill_histogram(params.CorrectionStep.alignment):
            qn_vector = self._qn_vector_before(conf, params.CorrectionStep.alignment)
            reference = self._current_qn_vector(conf.alignment_reference_index)
            h = conf.alignment_harmonic
            if qn_vector.is_defined(h) and reference.is_defined(h):
                output.alignment.fill_xx(variables, qn_vector.qx(h) * reference.qx(h))
                output.alignment.fill_yy(variables, qn_vector.qy(h) * reference.qy(h))
                output.alignment.fill_xy(variables, qn_vector.qx(h) * reference.qy(h))
                output.alignment.fill_yx(variables, qn_vector.qy(h) * reference.qx(h))

        if output.correlations and self._is_fill_stage(conf, params.CorrectionStep.twist):
            self._fill_correlations(conf, output)

    def _fill_correlations(self, conf: DetectorConfiguration, output: CalibrationHistograms) -> None:
        """ Fill the (AB, BC, CA) correlations for each twist and rescaling axis. """
        b_index, c_index = conf.correlation_partner_indices
        qn_vectors = [
            self._qn_vector_before(c, params.CorrectionStep.twist)
            for c in (conf, self.registry[b_index], self.registry[c_index])
        ]
        for combination_index, (first, second) in enumerate([(0, 1), (1, 2), (2, 0)]):
            q1, q2 = qn_vectors[first], qn_vectors[second]
            for profiles in output.correlations.values():
                profile = profiles[combination_index]
                harmonics = profile.harmonics
                if not all(q1.is_defined(h) and q2.is_defined(h) for h in harmonics):
                    continue
                for h in harmonics:
                    profile.fill_xx(h, self.variables, q1.qx(h) * q2.qx(h))
                    profile.fill_xy(h, self.variables, q1.qx(h) * q2.qy(h))
                    profile.fill_yx(h, self.variables, q1.qy(h) * q2.qx(h))
                    profile.fill_yy(h, self.variables, q1.qy(h) * q2.qy(h))

    def _fill_qa_histograms(self, conf: DetectorConfiguration) -> None:
        index = conf.global_index
        output = self._output_histograms[index]
        raw = self._qn_vectors[index][params.CorrectionStep.raw]
        if raw.n == 0:
            return

        assert output.qa_multiplicity is not None
        output.qa_multiplicity.fill(self.variables, raw.multiplicity)
        for step, profile in output.qa_mean_q.items():
            if not conf.is_apply_correction(step):
                continue
            qn_vector = self._qn_vectors[index][step]
            if not all(qn_vector.check_status(h, step.status) for h in conf.harmonics):
                continue
            for h in conf.harmonics:
                profile.fill_x(h, self.variables, qn_vector.qx(h))
                profile.fill_y(h, self.variables, qn_vector.qy(h))

        if conf.is_apply_correction(params.CorrectionStep.equalization):
            for method, profile in output.qa_equalized_multiplicity.items():
                for data_vector in self._data_vectors[index]:
                    profile.fill(self.variables, data_vector.channel_id, data_vector.equalized_weight(method))

    def finalize(self) -> histograms.HistogramList:
        """ Finish the pass over the data.

        The calibration histograms of the current label are also stored as those of all data, so they
        can be used as the default input of the next pass.

        Returns:
            The calibration histograms.
        """
        if not self._initialized:
            raise RuntimeError("The framework was never initialized, so there are no calibration histograms.")
        if self.label != ALL_DATA_LABEL and ALL_DATA_LABEL not in self.calibration_histograms:
            labeled = self.calibration_histograms.find(self.label)
            self.calibration_histograms.add(labeled.copy(name = ALL_DATA_LABEL))
        for conf, output in zip(self.registry, self._output_histograms):
            if output.mean_q is not None:
                logger.info(f"{conf.name}: {int(np.sum(output.mean_q.entries_histogram.values))} events used for the average Qn vector.")
        logger.info(f"Finished pass {self.correction_step + 1}/{self.passes_required + 1}")
        return self.calibration_histograms
