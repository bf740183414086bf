#!/usr/bin/env python

""" Analysis tasks built on the Qn vector corrections.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

__all__ = [
    "toy_calibration",
]
