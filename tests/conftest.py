#!/usr/bin/env python

""" Shared fixtures for the Qn vector corrections tests.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

from io import StringIO
import logging
import pytest
from typing import Any

import numpy as np

from qn_corrections.base import event_classes

@pytest.fixture
def logging_mixin(caplog: Any) -> None:
    """ Logging mixin to capture logging messages from all logger levels.

    By using this fixture, all logging messages will be captured and printed in the case of a test failure.
    """
    caplog.set_level(logging.DEBUG)

@pytest.fixture
def dump_to_string_and_retrieve() -> Any:
    """ Dump the object to YAML and then retrieve it. """
    def func(input_object: Any, y: Any) -> Any:
        s = StringIO()
        y.dump([input_object], s)
        s.seek(0)
        # The object is stored in a list, so we need to retrieve it.
        return y.load(s)[0]

    return func

@pytest.fixture
def centrality_axes() -> event_classes.EventClassAxes:
    """ One dimensional centrality event classes, with the centrality stored in variable 0. """
    axes = event_classes.EventClassAxes(dimension = 1, name = "centrality")
    axes.set_axis(0, variable_id = 0, bin_edges = np.array([0, 10, 20, 40, 80]), label = "Centrality (%)")
    return axes
