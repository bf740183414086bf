#!/usr/bin/env python

""" Toy models for exercising the corrections.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

__all__ = [
    "flow_events",
]
