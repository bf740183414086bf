#!/usr/bin/env python

""" Manages configuration of the Qn vector corrections.

The detector configurations can be defined in YAML. An example configuration is:

.. code-block:: yaml

    variables:
        centrality: 0
        vertex_z: 1
    eventClasses:
        default:
            - variable: "centrality"
              label: "Centrality (%)"
              bins: !PiecewiseBinning
                lower_edge: 0
                segments: [[10, 2], [80, 7]]
    cuts:
        central_tracks:
            - {variable: "eta", within: [-0.8, 0.8]}
    configurations:
        TPC:
            detector: "TPC"
            min_harmonic: 1
            max_harmonic: 3
            normalization: !NormalizationMethod q_over_m
            corrections: ["recentering", "twist", "rescaling"]
            event_classes: "default"
            cuts: "central_tracks"

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import argparse
import enum
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Type, TypeVar, Union

from pachyderm import generic_config
from pachyderm import yaml

from qn_corrections.base import cuts
from qn_corrections.base import event_classes
from qn_corrections.base import params
from qn_corrections.base.detector_configuration import DetectorConfiguration

logger = logging.getLogger(__name__)

_T = TypeVar("_T", bound = enum.Enum)

def yaml_with_registered_classes(additional_classes_to_register: Optional[Sequence[Any]] = None) -> yaml.ruamel.yaml.YAML:
    """ Create a YAML object which can construct the configuration objects.

    Args:
        additional_classes_to_register: Additional classes to register for YAML object construction.
    Returns:
        The YAML object.
    """
    classes_to_register: Set[Any] = set([
        event_classes.PiecewiseBinning,
    ])
    if additional_classes_to_register:
        classes_to_register.update(additional_classes_to_register)
    logger.debug(f"classes_to_register: {classes_to_register}")
    # Add in all classes defined in the params module
    return yaml.yaml(modules_to_register = [params], classes_to_register = classes_to_register)

def read_config(config_filename: str,
                additional_classes_to_register: Optional[Sequence[Any]] = None) -> generic_config.DictLike:
    """ Read the YAML configuration.

    Args:
        config_filename: Filename of the YAML config.
        additional_classes_to_register: Additional classes to register for YAML object construction.
    Returns:
        The YAML configuration.
    """
    yml = yaml_with_registered_classes(additional_classes_to_register = additional_classes_to_register)
    return generic_config.load_configuration(yaml = yml, filename = config_filename)

def to_enum(value: Union[str, _T], enum_type: Type[_T]) -> _T:
    """ Convert a configuration value to the enum type.

    The value can already be the enum (constructed through a YAML tag), or the name of the member.

    Args:
        value: Value from the configuration.
        enum_type: Expected enum type.
    Returns:
        The enum member.
    """
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type[str(value)]
    except KeyError as e:
        raise ValueError(f"Unrecognized {enum_type.__name__} \"{value}\". Options: {[str(m) for m in enum_type]}") from e

def _event_classes_from_config(config: Mapping[str, Any], variable_ids: Mapping[str, int]) -> Dict[str, event_classes.EventClassAxes]:
    return {
        name: event_classes.axes_from_config(entries, variable_ids = variable_ids, name = name)
        for name, entries in config.get("eventClasses", {}).items()
    }

def _lookup(values: Mapping[str, Any], name: str, kind: str, configuration_name: str) -> Any:
    if name not in values:
        raise KeyError(name, f"Configuration {configuration_name} refers to unknown {kind} \"{name}\". Available: {list(values)}")
    return values[name]

def detector_configuration_from_config(name: str, entry: Mapping[str, Any], variable_ids: Mapping[str, int],
                                       event_class_axes: Mapping[str, event_classes.EventClassAxes],
                                       named_cuts: Mapping[str, Sequence[Mapping[str, Any]]]) -> DetectorConfiguration:
    """ Create a single detector configuration.

    Args:
        name: Name of the detector configuration.
        entry: Configuration of the detector configuration.
        variable_ids: Map from variable name to index in the variable vector.
        event_class_axes: Named event class axes.
        named_cuts: Named cuts configurations.
    Returns:
        The detector configuration.
    """
    def axes(key: str) -> Optional[event_classes.EventClassAxes]:
        value = entry.get(key)
        if value is None:
            return None
        if isinstance(value, str):
            return _lookup(event_class_axes, value, "event classes", name)  # type: ignore
        return event_classes.axes_from_config(value, variable_ids = variable_ids, name = f"{name}_{key}")

    recentering_axes = axes("event_classes")
    if recentering_axes is None:
        raise ValueError(f"Event classes must be specified for configuration {name}")

    selected_cuts = None
    cuts_entry = entry.get("cuts")
    if cuts_entry is not None:
        if isinstance(cuts_entry, str):
            selected_cuts = cuts.cuts_from_config(
                _lookup(named_cuts, cuts_entry, "cuts", name), variable_ids = variable_ids, name = cuts_entry,
            )
        else:
            selected_cuts = cuts.cuts_from_config(cuts_entry, variable_ids = variable_ids, name = name)

    correlation_partners = entry.get("correlation_partners")
    if correlation_partners is not None:
        if len(correlation_partners) != 2:
            raise ValueError(f"Configuration {name} requires exactly two correlation partners. Provided: {correlation_partners}")
        correlation_partners = (str(correlation_partners[0]), str(correlation_partners[1]))

    used_channels = entry.get("used_channels")
    channel_groups = entry.get("channel_groups")

    return DetectorConfiguration(
        name = name,
        detector = entry.get("detector", name),
        recentering_axes = recentering_axes,
        min_harmonic = int(entry.get("min_harmonic", 1)),
        max_harmonic = int(entry.get("max_harmonic", 2)),
        normalization = to_enum(entry.get("normalization", "q_over_m"), params.NormalizationMethod),
        corrections = [to_enum(step, params.CorrectionStep) for step in entry.get("corrections", [])],
        equalization_axes = axes("equalization_event_classes"),
        alignment_axes = axes("alignment_event_classes"),
        twist_and_rescale_axes = axes("twist_and_rescale_event_classes"),
        n_channels = int(entry.get("n_channels", 0)),
        used_channels = [bool(v) for v in used_channels] if used_channels is not None else None,
        channel_groups = [int(v) for v in channel_groups] if channel_groups is not None else None,
        equalization_method = to_enum(entry.get("equalization_method", "average"), params.EqualizationMethod),
        recentering_width_equalization = bool(entry.get("recentering_width_equalization", False)),
        alignment_harmonic = int(entry.get("alignment_harmonic", 2)),
        alignment_reference = entry.get("alignment_reference"),
        twist_and_rescale_method = to_enum(
            entry.get("twist_and_rescale_method", "double_harmonic"), params.TwistAndRescaleMethod
        ),
        correlation_partners = correlation_partners,
        cuts = selected_cuts,
        min_entries_to_validate = int(entry.get("min_entries_to_validate", 1)),
    )

def detector_configurations_from_config(config: Mapping[str, Any]) -> List[DetectorConfiguration]:
    """ Create the detector configurations defined in the configuration.

    Args:
        config: Configuration containing the ``variables``, ``eventClasses``, ``cuts`` and
            ``configurations`` sections. Only ``configurations`` is required.
    Returns:
        The detector configurations, in the order in which they are defined.
    """
    variable_ids = {str(k): int(v) for k, v in config.get("variables", {}).items()}
    event_class_axes = _event_classes_from_config(config, variable_ids)
    named_cuts = config.get("cuts", {})

    configurations = []
    for name, entry in config["configurations"].items():
        configurations.append(detector_configuration_from_config(
            name = str(name), entry = entry, variable_ids = variable_ids,
            event_class_axes = event_class_axes, named_cuts = named_cuts,
        ))
        logger.debug(f"Created configuration {name}")

    return configurations

def determine_arguments_from_terminal(
        args: Optional[List[Any]] = None,
        description: str = "Qn vector corrections {task_name}.",
        add_options_function: Optional[Callable[[argparse.ArgumentParser], Any]] = None,
        **kwargs: str) -> Tuple[str, argparse.Namespace]:
    """ Determine the configuration filename and additional options from the command line arguments.

    Args:
        args: Arguments to parse. Default: None (which will then use sys.argv)
        description: Help description for arguments
        add_options_function: Function which takes the ArgumentParser() object and adds arguments.
        kwargs: Additional arguments to format the help description. Often contains ``task_name``
            to specify the task name.
    Returns:
        (config_filename, argparse.Namespace). The namespace is returned for handling custom arguments
            added with add_options_function.
    """
    # Make sure there is always a task name
    if "task_name" not in kwargs:
        kwargs["task_name"] = "analysis"

    # Setup parser
    parser = argparse.ArgumentParser(description = description.format(**kwargs))
    # General options
    parser.add_argument("-c", "--configFilename", metavar = "configFilename",
                        type = str, default = "config/qnCorrectionsConfig.yaml",
                        help = "Path to config filename")

    # Extension for additional arguments
    if add_options_function:
        add_options_function(parser)

    # Parse arguments
    parsed_args = parser.parse_args(args)

    return (parsed_args.configFilename, parsed_args)
