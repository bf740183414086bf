#!/usr/bin/env python

""" Base package for the Qn vector corrections.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

__all__ = [
    "analysis_config",
    "analysis_manager",
    "cuts",
    "detector_configuration",
    "event_classes",
    "histograms",
    "params",
    "qn_vector",
]
