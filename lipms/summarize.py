"""
Transition summarization for the lipidomics pipeline.

Collapses multiple transitions (rows) measured for the same molecule
into a single feature.
"""

import pandas as pd

from .utils import _derive

_METHODS = ('average', 'max')


def _join_unique(values):
    unique = [str(v) for v in pd.unique(values.dropna())]
    return ';'.join(unique) if unique else None


def summarize_lip(data, method='average'):
    """
    Summarize duplicate transitions into one row per molecule.

    Rows sharing a 'Molecule' name are combined per sample with the mean
    ('average', missing values ignored) or the maximum ('max'). Molecules
    keep the order of their first appearance.

    Parameters
    ----------
    data : dict
        Experiment dictionary.
    method : str, optional
        'average' (default) or 'max'.

    Returns
    -------
    dict
        New experiment with one feature per molecule. Feature metadata gains
        an 'n_transitions' column.

    Example
    -------
    >>> data = summarize_lip(data, method='average')
    """
    if method not in _METHODS:
        raise ValueError(f"Unknown summarization method '{method}'. Choose from: {', '.join(_METHODS)}")

    print("\n" + "="*80)
    print("TRANSITION SUMMARIZATION")
    print("="*80)

    features = data['features']
    keys = features['Molecule']

    # Integer codes in first-appearance order
    codes, uniques = pd.factorize(keys, sort=False)
    new_index = pd.RangeIndex(len(uniques), name='feature')

    assays = {}
    for measure, assay in data['assays'].items():
        grouped = assay.groupby(codes, sort=True)
        summarized = grouped.mean() if method == 'average' else grouped.max()
        summarized.index = new_index
        summarized.columns = assay.columns
        assays[measure] = summarized

    grouped_features = features.groupby(codes, sort=True)
    new_features = grouped_features.first()
    new_features['Molecule'] = list(uniques)
    new_features['Adduct'] = grouped_features['Adduct'].agg(_join_unique)
    new_features['RetentionTime'] = grouped_features['RetentionTime'].mean()
    new_features['istd'] = grouped_features['istd'].any().astype(bool)
    new_features['n_transitions'] = grouped_features.size().astype(int)
    new_features.index = new_index
    new_features = new_features[['Molecule', 'Class', 'Adduct', 'RetentionTime',
                                 'total_cl', 'total_cs', 'istd', 'n_transitions']]

    n_before = len(features)
    n_after = len(new_features)
    n_multi = int((new_features['n_transitions'] > 1).sum())

    print(f"\nMethod: {method}")
    print(f"  > {n_before} transitions -> {n_after} molecules")
    print(f"    {n_multi} molecule(s) had more than one transition")
    print("="*80 + "\n")

    derived = _derive(data, assays=assays, features=new_features)
    derived['provenance'].append({
        'step': 'summarize',
        'method': method,
        'n_before': n_before,
        'n_after': n_after,
    })
    return derived
