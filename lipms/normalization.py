"""
Normalization functions for the lipidomics pipeline.

Supports Probabilistic Quotient Normalization (PQN) and internal
standard (ISTD) normalization, with optional log transformation.
"""

import numpy as np
import pandas as pd

from .errors import InvalidValueError, MissingStandardError
from .utils import _derive, _get_assay

_LOG_BASES = {'e': np.e, 'ln': np.e, 2: 2.0, '2': 2.0, 10: 10.0, '10': 10.0}


def _exclusion_mask(samples, exclude):
    """
    Boolean mask of samples matching the exclusion filter.

    A sample matches when its group equals a token (case-insensitive)
    or its sample id contains the token.
    """
    if exclude is None:
        return pd.Series(False, index=samples.index)
    tokens = [exclude] if isinstance(exclude, str) else list(exclude)
    tokens = [str(t).lower() for t in tokens if t]

    groups = samples['Group'].fillna('').astype(str).str.lower()
    ids = samples.index.to_series().astype(str).str.lower()

    mask = pd.Series(False, index=samples.index)
    for token in tokens:
        mask |= (groups == token) | ids.str.contains(token, regex=False)
    return mask


def pqn_factors(assay, reference_samples=None):
    """
    Per-sample PQN dilution quotients.

    The reference profile is the per-feature median over the reference
    samples; each sample's quotient is the median ratio of its values to
    that reference, over features with a finite, non-zero reference.

    Parameters
    ----------
    assay : pd.DataFrame
        Features x samples intensities (linear scale).
    reference_samples : list of str, optional
        Samples used to build the reference (default: all).

    Returns
    -------
    tuple of (pd.Series, pd.Series)
        Quotient per sample and the reference profile per feature.
    """
    ref_cols = assay.columns if reference_samples is None else list(reference_samples)
    reference = assay[ref_cols].median(axis=1, skipna=True)
    usable = np.isfinite(reference) & (reference != 0)

    ratios = assay.loc[usable].div(reference[usable], axis=0)
    factors = ratios.median(axis=0, skipna=True)
    factors.name = 'pqn_factor'
    return factors, reference


def _log_transform(assay, base, stage):
    """Log-transform an assay, failing on non-positive finite values."""
    values = assay.to_numpy()
    bad = np.isfinite(values) & (values <= 0)
    if bad.any():
        rows, cols = np.nonzero(bad)
        examples = [f"({assay.index[r]}, {assay.columns[c]})" for r, c in zip(rows[:5], cols[:5])]
        raise InvalidValueError(
            f"{stage}: {int(bad.sum())} non-positive value(s) cannot be log-transformed, "
            f"e.g. (feature, sample) {', '.join(examples)}"
        )
    log_base = _LOG_BASES.get(base)
    if log_base is None:
        raise ValueError(f"Unknown log base '{base}'. Choose from: e, 2, 10")
    return np.log(assay) / np.log(log_base)


def _finish(data, measure, normalized, record, log, log_base, stage):
    """Apply the optional log transform and attach the normalization record."""
    if log:
        normalized = _log_transform(normalized, log_base, stage)

    assays = dict(data['assays'])
    assays[measure] = normalized

    record.update({'log': bool(log), 'log_base': log_base if log else None})
    derived = _derive(data, assays=assays, normalization=record)
    step = {'step': 'normalize'}
    step.update({k: v for k, v in record.items() if k != 'factors'})
    derived['provenance'].append(step)
    return derived


def normalize_pqn(data, measure='Area', exclude='blank', log=True, log_base='e'):
    """
    Probabilistic Quotient Normalization.

    Samples matching ``exclude`` do not contribute to the reference
    profile but are still normalized.

    Returns
    -------
    dict
        New experiment with the normalized assay and a 'normalization'
        record ('method', 'measure', 'exclude', 'excluded_samples',
        'factors', 'log', 'log_base').

    Raises
    ------
    InvalidValueError
        If the exclusion filter matches every sample.
    """
    assay = _get_assay(data, measure)
    excluded = _exclusion_mask(data['samples'], exclude)
    reference_samples = excluded.index[~excluded].tolist()
    if not reference_samples:
        raise InvalidValueError(
            f"PQN normalization: exclusion filter {exclude!r} matches all {len(excluded)} samples, "
            f"no sample is left to build the reference profile"
        )

    factors, _ = pqn_factors(assay, reference_samples)
    factors = factors.where(np.isfinite(factors) & (factors != 0))
    normalized = assay.div(factors, axis=1)

    record = {
        'method': 'pqn',
        'measure': measure,
        'exclude': exclude,
        'excluded_samples': excluded.index[excluded].tolist(),
        'factors': factors,
    }
    return _finish(data, measure, normalized, record, log, log_base, 'PQN normalization')


def _standard_mask(features, standards=None):
    mask = features['istd'].astype(bool).copy()
    if standards:
        mask |= features['Molecule'].isin(standards)
    return mask


def normalize_istd(data, measure='Area', exclude='blank', log=True, log_base='e', standards=None):
    """
    Internal standard normalization.

    Every non-standard feature is divided, per sample, by the mean of the
    internal standards of its own lipid class; classes without a standard
    use the mean of all standards. Standard rows are left unscaled.

    Parameters
    ----------
    standards : list of str, optional
        Molecule names to use as standards in addition to features flagged
        'istd' at load time.

    Raises
    ------
    MissingStandardError
        If no feature is an internal standard.
    """
    assay = _get_assay(data, measure)
    features = data['features']
    is_standard = _standard_mask(features, standards)

    if not is_standard.any():
        raise MissingStandardError(
            f"ISTD normalization: no internal standard found among {len(features)} features "
            f"(measure '{measure}'). Flag standards in molecule names, e.g. '(d7)', "
            f"or list them under normalization.istd"
        )

    std_values = assay.loc[is_standard]
    std_classes = features.loc[is_standard, 'Class']
    overall = std_values.mean(axis=0, skipna=True)

    normalized = assay.copy()
    used = {}
    for lipid_class, idx in features.loc[~is_standard].groupby('Class', dropna=False).groups.items():
        class_std = std_values.loc[std_classes == lipid_class] if pd.notna(lipid_class) else std_values.iloc[0:0]
        if len(class_std) > 0:
            divisor = class_std.mean(axis=0, skipna=True)
            used[lipid_class] = features.loc[class_std.index, 'Molecule'].tolist()
        else:
            divisor = overall
            used[lipid_class] = 'all'
        normalized.loc[idx] = assay.loc[idx].div(divisor.where(divisor != 0), axis=1)

    excluded = _exclusion_mask(data['samples'], exclude)
    record = {
        'method': 'istd',
        'measure': measure,
        'exclude': exclude,
        'excluded_samples': excluded.index[excluded].tolist(),
        'factors': overall.rename('istd_mean'),
        'standards': features.loc[is_standard, 'Molecule'].tolist(),
        'class_standards': used,
    }
    return _finish(data, measure, normalized, record, log, log_base, 'ISTD normalization')


def norm_lip(data, method=None, measure=None, exclude=None, log=None, log_base=None):
    """
    Normalize an experiment's intensities.

    Normalization options:
    - 'pqn': Probabilistic Quotient Normalization (default)
    - 'istd': Internal standard normalization

    Both keep every feature and sample; excluded samples (e.g. blanks)
    are listed in the normalization record.

    Parameters
    ----------
    data : dict
        Output from summarize_lip() (or prep_lip()).
    method : str, optional
        'pqn' or 'istd' (default: config normalization.method).
    measure : str, optional
        Assay to normalize (default: config['measure']).
    exclude : str or list of str, optional
        Exclusion filter (default: config normalization.exclude, 'blank').
    log : bool, optional
        Log-transform after scaling (default: config normalization.log).
    log_base : str or int, optional
        'e' (default), 2 or 10.

    Returns
    -------
    dict
        New experiment with the normalized assay and a 'normalization' record.

    Example
    -------
    >>> data = summarize_lip(data)
    >>> data = norm_lip(data, method='pqn', exclude='blank', log=True)
    """
    norm_config = data['config']['normalization']
    method = method or norm_config['method']
    measure = measure or data['config']['measure']
    exclude = norm_config['exclude'] if exclude is None else exclude
    log = norm_config['log'] if log is None else log
    log_base = log_base or norm_config.get('log_base', 'e')

    print("\n" + "="*80)
    print("NORMALIZATION")
    print("="*80)

    assay = _get_assay(data, measure)
    print(f"\nMethod: {method}")
    print(f"Measure: {measure}")
    print(f"Processing {assay.shape[0]} features across {assay.shape[1]} samples")

    if method == 'pqn':
        normalized = normalize_pqn(data, measure=measure, exclude=exclude, log=log, log_base=log_base)
    elif method == 'istd':
        normalized = normalize_istd(data, measure=measure, exclude=exclude, log=log,
                                    log_base=log_base, standards=norm_config.get('istd'))
    else:
        raise ValueError(f"Unknown normalization method '{method}'. Choose from: pqn, istd")

    record = normalized['normalization']
    factors = record['factors']

    if record['excluded_samples']:
        print(f"  > Excluded from reference: {', '.join(record['excluded_samples'])}")
    if method == 'istd':
        print(f"  > {len(record['standards'])} internal standard(s)")
    print(f"  > Scaling factors: {factors.min():.3f} to {factors.max():.3f}")
    if log:
        print(f"  > Log transformation applied (base {log_base})")

    print("\n" + "="*80)
    print("NORMALIZATION COMPLETE")
    print("="*80 + "\n")

    return normalized
