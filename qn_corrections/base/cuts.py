#!/usr/bin/env python

""" Selection cuts applied to the event variable vector.

The cuts are evaluated when a data vector is added to a detector configuration, so they can select
on both event and per data vector (track, channel) variables, as long as the variable vector has been
updated beforehand.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, Yale University
"""

import abc
from dataclasses import dataclass
import logging
from typing import Any, Iterator, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

class Cut(abc.ABC):
    """ Cut on a single variable of the variable vector. """
    variable_id: int

    @abc.abstractmethod
    def is_selected(self, variables: Sequence[float]) -> bool:
        """ Check whether the current variables pass the cut. """
        ...

@dataclass(frozen = True)
class CutWithin(Cut):
    """ Select values strictly within (min, max). """
    variable_id: int
    min: float
    max: float

    def is_selected(self, variables: Sequence[float]) -> bool:
        return self.min < variables[self.variable_id] < self.max

@dataclass(frozen = True)
class CutOutside(Cut):
    """ Select values outside of the range (min, max). The range edges are selected. """
    variable_id: int
    min: float
    max: float

    def is_selected(self, variables: Sequence[float]) -> bool:
        return not (self.min < variables[self.variable_id] < self.max)

@dataclass(frozen = True)
class CutAbove(Cut):
    """ Select values strictly above the threshold. """
    variable_id: int
    threshold: float

    def is_selected(self, variables: Sequence[float]) -> bool:
        return variables[self.variable_id] > self.threshold

@dataclass(frozen = True)
class CutBelow(Cut):
    """ Select values strictly below the threshold. """
    variable_id: int
    threshold: float

    def is_selected(self, variables: Sequence[float]) -> bool:
        return variables[self.variable_id] < self.threshold

@dataclass(frozen = True)
class CutFlag(Cut):
    """ Select on a flag variable.

    Attributes:
        variable_id: Index of the flag in the variable vector.
        accept: If True, select when the flag is set. Otherwise, select when it isn't set.
    """
    variable_id: int
    accept: bool = True

    def is_selected(self, variables: Sequence[float]) -> bool:
        return bool(int(variables[self.variable_id])) == self.accept

class Cuts:
    """ Set of cuts which must all be passed.

    Args:
        cuts: Cuts in the set.
        name: Name of the set.
    """
    def __init__(self, cuts: Optional[Sequence[Cut]] = None, name: str = ""):
        self.name = name
        self._cuts: List[Cut] = list(cuts) if cuts else []

    def add(self, cut: Cut) -> None:
        self._cuts.append(cut)

    def is_selected(self, variables: Sequence[float]) -> bool:
        """ Check whether the variables pass all of the cuts. An empty set selects everything. """
        return all(cut.is_selected(variables) for cut in self._cuts)

    def __iter__(self) -> Iterator[Cut]:
        return iter(self._cuts)

    def __len__(self) -> int:
        return len(self._cuts)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.name == other.name and self._cuts == other._cuts

def cuts_from_config(entries: Sequence[Mapping[str, Any]], variable_ids: Mapping[str, int], name: str = "") -> Cuts:
    """ Create cuts from the configuration.

    Each entry selects a variable (by name or index) and one cut type:

    .. code-block:: yaml

        cuts:
            - {variable: "eta", within: [-0.8, 0.8]}
            - {variable: "pt", above: 0.2}
            - {variable: "eta", outside: [-0.1, 0.1]}
            - {variable: "is_primary", flag: true}

    Args:
        entries: Cuts configuration.
        variable_ids: Map from variable name to index in the variable vector.
        name: Name of the set of cuts.
    Returns:
        The cuts.
    """
    cuts = Cuts(name = name)
    for entry in entries:
        variable = entry["variable"]
        if isinstance(variable, str):
            if variable not in variable_ids:
                raise KeyError(variable, f"Cut variable \"{variable}\" is not defined. Available: {list(variable_ids)}")
            variable_id = variable_ids[variable]
        else:
            variable_id = int(variable)

        cut: Cut
        if "within" in entry:
            cut = CutWithin(variable_id, float(entry["within"][0]), float(entry["within"][1]))
        elif "outside" in entry:
            cut = CutOutside(variable_id, float(entry["outside"][0]), float(entry["outside"][1]))
        elif "above" in entry:
            cut = CutAbove(variable_id, float(entry["above"]))
        elif "below" in entry:
            cut = CutBelow(variable_id, float(entry["below"]))
        elif "flag" in entry:
            cut = CutFlag(variable_id, bool(entry["flag"]))
        else:
            raise ValueError(f"Unrecognized cut configuration {dict(entry)}")
        cuts.add(cut)

    return cuts
