#!/usr/bin/env python

""" Flow vector (Qn) corrections.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

from qn_corrections.version import __version__  # noqa: F401
