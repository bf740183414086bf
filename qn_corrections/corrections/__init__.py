#!/usr/bin/env python

""" Correction steps and the framework manager which drives them.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

__all__ = [
    "calibration_histograms",
    "manager",
    "steps",
]
