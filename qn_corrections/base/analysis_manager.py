#!/usr/bin/env python

""" Base functionality for the managers which drive passes over the data.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import abc
import coloredlogs
import enlighten
import logging
from typing import Any, Type, TypeVar

from pachyderm import generic_class

from qn_corrections.base import analysis_config

logger = logging.getLogger(__name__)

class Manager(generic_class.EqualityMixin, abc.ABC):
    """ Manager which reads the configuration and then drives the passes over the events.

    Args:
        config_filename: Path to the configuration filename.
        manager_task_name: Name of the manager task in the config.

    Attributes:
        config_filename: Path to the configuration filename.
        task_name: Name of the manager task in the config.
        config: Overall YAML configuration. The detector configurations are defined at this level, so
            they can be shared between tasks.
        task_config: Task YAML configuration. This is equivalent to ``self.config[self.task_name]``.
        processing_options: Processing options specified in the task config. Empty if not specified.
        _progress_manager: Keep track of the event loops using status bars.
    """
    def __init__(self, config_filename: str, manager_task_name: str, **kwargs: Any):
        self.config_filename = config_filename
        self.task_name = manager_task_name

        self.config = analysis_config.read_config(config_filename = self.config_filename)
        if self.task_name not in self.config:
            raise KeyError(self.task_name, f"Task {self.task_name} is not defined in {self.config_filename}")
        self.task_config = self.config[self.task_name]
        # For convenience since it is frequently accessed.
        self.processing_options = self.task_config.get("processing_options", {})

        self._progress_manager = enlighten.get_manager()

    def events_counter(self, total: int, description: str) -> enlighten.Counter:
        """ Status bar for a loop over events.

        Args:
            total: Number of events in the loop.
            description: Description shown next to the status bar.
        Returns:
            The counter. It should be used as a context manager so the bar is closed at the end of the loop.
        """
        return self._progress_manager.counter(total = total, desc = description, unit = "events")

    @abc.abstractmethod
    def run(self) -> bool:
        """ Run the passes over the data.

        Returns:
            True if the passes were run successfully.
        """
        ...

    def _run(self) -> bool:
        """ Run, and then stop the status bars so they don't interfere with later output.

        Returns:
            True if the passes were run successfully.
        """
        result = self.run()
        self._progress_manager.stop()
        return result

_T = TypeVar("_T", bound = Manager)

def run_helper(manager_class: Type[_T], **kwargs: str) -> _T:
    """ Create and run a manager, with the configuration file taken from the terminal arguments.

    Logging is formatted with colors through ``coloredlogs``.

    Note:
        The ``task_name`` is only used for the argument parsing help. The name of the task in the
        configuration is hard coded in the manager class.

    Args:
        manager_class: Class of the manager to run.
        task_name: Name of the task for the argument parsing help.
        description: Description of the task for the argument parsing help.
    Returns:
        The manager, after it was run.
    """
    coloredlogs.install(
        level = logging.DEBUG,
        fmt = "%(asctime)s %(name)s:%(lineno)d %(levelname)s %(message)s"
    )
    # Quiet down the pachyderm logging
    for name in ["pachyderm.generic_config", "pachyderm.yaml"]:
        logging.getLogger(name).setLevel(logging.INFO)

    task_name = kwargs.pop("task_name", "analysis")
    config_filename, _ = analysis_config.determine_arguments_from_terminal(task_name = task_name, **kwargs)
    logger.info(f"Running {task_name} with configuration {config_filename}")
    manager = manager_class(config_filename = config_filename)  # type: ignore
    manager._run()

    return manager
