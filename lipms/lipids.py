"""
Lipid name annotation for the lipidomics pipeline.

Parses lipid class, total chain length and total unsaturation from
shorthand lipid names, and flags internal standards.
"""

import re

import numpy as np
import pandas as pd

# Chain tokens look like '16:0', 'd18:1', 'O-34:1', 'P-18:0' (optionally ';O2')
_CHAIN_RE = re.compile(r'(?<!\d)(?:[dtmOP]-?)?(\d+):(\d+)')
_CLASS_RE = re.compile(r"([A-Za-z][A-Za-z0-9]*?)(?=[\s(_\-]|\d+:\d|$)")
_ISTD_RE = re.compile(r'\(IS\)|\bISTD\b|^IS[\s_]|\(d\d+\)|[\s_-]d\d+\s*$|\+D\d+', re.IGNORECASE)


def lipid_class(name):
    """Extract the lipid class prefix from a lipid name (e.g. 'PC' from 'PC 34:1')."""
    if not isinstance(name, str):
        return None
    cleaned = re.sub(r'^\s*(IS|ISTD)[\s_]+', '', name, flags=re.IGNORECASE)
    m = _CLASS_RE.match(cleaned.strip())
    if not m:
        return None
    # Ether-linked species keep the base class ('PE O-38:4' -> 'PE')
    return m.group(1).strip()


def chain_totals(name):
    """
    Sum carbons and double bonds over all acyl chains in a lipid name.

    Returns
    -------
    tuple of (int or None, int or None)
        Total chain length and total unsaturation.

    Example
    -------
    >>> chain_totals('TG 16:0_18:1_18:2')
    (52, 3)
    """
    if not isinstance(name, str):
        return None, None
    # Deuterium labels are not chains
    stripped = re.sub(r'\(d\d+\)|[\s_-]d\d+\s*$', '', name)
    chains = _CHAIN_RE.findall(stripped)
    if not chains:
        return None, None
    total_cl = sum(int(c) for c, _ in chains)
    total_cs = sum(int(s) for _, s in chains)
    return total_cl, total_cs


def is_istd(name, standards=None):
    """Return True when a lipid name denotes an internal standard."""
    if not isinstance(name, str):
        return False
    if standards and name in standards:
        return True
    return bool(_ISTD_RE.search(name))


def annotate_molecules(molecules, classes=None, standards=None):
    """
    Build lipid annotation columns for a list of molecule names.

    Parameters
    ----------
    molecules : sequence of str
        Lipid names.
    classes : sequence of str, optional
        Class labels from the input table. Missing entries are parsed
        from the molecule name.
    standards : list of str, optional
        Molecule names to flag as internal standards in addition to the
        name-based detection.

    Returns
    -------
    pd.DataFrame
        Columns 'Class', 'total_cl', 'total_cs', 'istd'.
    """
    molecules = list(molecules)
    standards = set(standards or [])

    parsed_class = [lipid_class(m) for m in molecules]
    if classes is not None:
        given = pd.Series(list(classes), dtype=object)
        given = given.where(given.notna() & (given.astype(str).str.strip() != ''), None)
        class_col = [g if g is not None else p for g, p in zip(given, parsed_class)]
    else:
        class_col = parsed_class

    totals = [chain_totals(m) for m in molecules]

    return pd.DataFrame({
        'Class': class_col,
        'total_cl': pd.array([t[0] for t in totals], dtype='Int64'),
        'total_cs': pd.array([t[1] for t in totals], dtype='Int64'),
        'istd': np.array([is_istd(m, standards) for m in molecules], dtype=bool),
    })
