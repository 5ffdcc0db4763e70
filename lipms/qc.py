"""
Quality control functions for the lipidomics pipeline.

Computes per-sample total intensity, per-molecule coefficient of
variation and per-class intensity distributions, and handles sample
dropping after QC review.
"""

import numpy as np
import pandas as pd

from .utils import _derive, _get_assay


def total_intensity(data, measure='Area', log=True):
    """
    Total intensity (TIC) per sample.

    Parameters
    ----------
    data : dict
        Experiment dictionary.
    measure : str, optional
        Assay to sum (default: 'Area').
    log : bool, optional
        Return the natural log of the totals (default: True).

    Returns
    -------
    pd.Series
        One value per sample, indexed by sample id.
    """
    assay = _get_assay(data, measure)
    tic = assay.sum(axis=0, skipna=True, min_count=1)
    if log:
        tic = np.log(tic.where(tic > 0))
    tic.name = 'tic'
    return tic


def molecule_cv(data, measure='Area', samples=None):
    """
    Coefficient of variation (std / mean) per molecule across samples.

    Parameters
    ----------
    samples : list of str, optional
        Restrict to these samples, e.g. pooled QC injections. Default: all.

    Returns
    -------
    pd.Series
        CV per feature (NaN where fewer than two values or zero mean).
    """
    assay = _get_assay(data, measure)
    if samples is not None:
        assay = assay[list(samples)]
    mean = assay.mean(axis=1, skipna=True)
    std = assay.std(axis=1, skipna=True, ddof=1)
    cv = std / mean.where(mean != 0)
    cv.name = 'cv'
    return cv


def class_intensity(data, measure='Area', log=True):
    """Long table of intensities by lipid class and sample, for class boxplots."""
    assay = _get_assay(data, measure)
    values = assay.where(assay > 0) if log else assay
    if log:
        values = np.log(values)

    long_df = values.copy()
    long_df.insert(0, 'Class', data['features']['Class'])
    long_df = long_df.melt(id_vars='Class', var_name='SampleID', value_name='value')
    return long_df.dropna(subset=['value']).reset_index(drop=True)


def _robust_z(values):
    """Median/MAD z-score; NaN-safe."""
    median = values.median()
    mad = (values - median).abs().median() * 1.4826
    if not np.isfinite(mad) or mad == 0:
        return pd.Series(0.0, index=values.index)
    return (values - median) / mad


def qc_lip(data, measure=None, log=None, cv_threshold=None, tic_threshold=None, qc_group=None):
    """
    Compute quality control metrics for an experiment.

    Reports:
    - Total intensity per sample (log scale), with samples whose robust
      z-score exceeds tic_threshold flagged
    - Coefficient of variation per molecule, with molecules above
      cv_threshold flagged
    - Per-class intensity distributions

    Flags are advisory: nothing is removed. Use drop_samples() after
    reviewing them. Samples without a group are included.

    Parameters
    ----------
    data : dict
        Experiment from prep_lip() or annotate_lip().
    measure : str, optional
        Assay to evaluate (default: config['measure']).
    log : bool, optional
        Log-transform total intensities (default: config qc.log).
    cv_threshold : float, optional
        CV above which a molecule is flagged (default: config qc.cv_threshold).
    tic_threshold : float, optional
        Robust z-score cutoff for total intensity (default: config qc.tic_threshold).
    qc_group : str, optional
        Group label of pooled QC samples; when present, CVs are computed
        over those samples only (default: config qc.qc_group).

    Returns
    -------
    dict
        'tic', 'tic_z', 'cv', 'class_intensity', 'flagged_samples',
        'unstable_molecules', 'cv_samples', 'measure'.

    Example
    -------
    >>> qc = qc_lip(data)
    >>> qc['flagged_samples']
    """
    qc_config = data['config']['qc']
    measure = measure or data['config']['measure']
    log = qc_config['log'] if log is None else log
    cv_threshold = qc_config['cv_threshold'] if cv_threshold is None else cv_threshold
    tic_threshold = qc_config['tic_threshold'] if tic_threshold is None else tic_threshold
    qc_group = qc_config.get('qc_group') if qc_group is None else qc_group

    print("\n" + "="*80)
    print("QUALITY CONTROL ANALYSIS")
    print("="*80)

    # =========================================================================
    # 1. TOTAL INTENSITY PER SAMPLE
    # =========================================================================
    print(f"\n[1/3] Total intensity per sample...")

    tic = total_intensity(data, measure=measure, log=log)
    tic_z = _robust_z(tic if log else np.log(tic.where(tic > 0)))
    tic_z.name = 'tic_z'
    flagged_samples = tic_z.index[tic_z.abs() > tic_threshold].tolist()

    print(f"  > {len(tic)} samples, median {'log ' if log else ''}TIC: {tic.median():.2f}")
    if flagged_samples:
        print(f"  Warning: {len(flagged_samples)} sample(s) deviate > {tic_threshold} MADs: {flagged_samples}")

    # =========================================================================
    # 2. COEFFICIENT OF VARIATION
    # =========================================================================
    print(f"\n[2/3] Coefficient of variation per molecule...")

    cv_samples = None
    if qc_group:
        groups = data['samples']['Group']
        cv_samples = groups.index[groups.fillna('').str.lower() == str(qc_group).lower()].tolist()
        if len(cv_samples) < 2:
            print(f"  Warning: fewer than 2 '{qc_group}' samples, using all samples for CV")
            cv_samples = None
        else:
            print(f"  Using {len(cv_samples)} '{qc_group}' samples")

    cv = molecule_cv(data, measure=measure, samples=cv_samples)
    unstable = cv.index[cv > cv_threshold]
    unstable_molecules = data['features'].loc[unstable, 'Molecule'].tolist()

    print(f"  > Median CV: {cv.median() * 100:.1f}%")
    print(f"    {len(unstable_molecules)} molecule(s) with CV > {cv_threshold * 100:.0f}%")

    # =========================================================================
    # 3. CLASS DISTRIBUTIONS
    # =========================================================================
    print(f"\n[3/3] Intensity by lipid class...")

    by_class = class_intensity(data, measure=measure, log=log)
    print(f"  > {by_class['Class'].nunique()} classes")

    print("\n" + "="*80)
    print("QC COMPLETE")
    print("="*80 + "\n")

    return {
        'measure': measure,
        'log': log,
        'tic': tic,
        'tic_z': tic_z,
        'cv': cv,
        'class_intensity': by_class,
        'flagged_samples': flagged_samples,
        'unstable_molecules': unstable_molecules,
        'cv_samples': cv_samples,
    }


def drop_samples(data, samples_to_drop):
    """
    Remove problematic samples from the experiment after QC review.

    Use this after reviewing QC output to exclude samples that:
    - Have outlying total intensity
    - Cluster away from replicates in PCA
    - Failed during sample prep or injection

    Parameters
    ----------
    data : dict
        Experiment dictionary.
    samples_to_drop : list of str
        Sample ids to remove. Unknown ids are reported and ignored.

    Returns
    -------
    dict
        New experiment without the dropped samples.

    Example
    -------
    >>> data = drop_samples(data, ['QC_07', 'KO_3'])
    """
    print("\n" + "="*80)
    print("DROP SAMPLES (MANUAL QC)")
    print("="*80)

    known = set(data['samples'].index)
    unknown = [s for s in samples_to_drop if s not in known]
    to_drop = [s for s in samples_to_drop if s in known]

    for sample in unknown:
        print(f"  Warning: Sample '{sample}' not found")

    if not to_drop:
        print("\nNo valid samples to drop.")
        return data

    print(f"\nDropping {len(to_drop)} sample(s):")
    for sample in to_drop:
        print(f"  - {sample}")

    assays = {m: a.drop(columns=to_drop) for m, a in data['assays'].items()}
    samples = data['samples'].drop(index=to_drop)

    derived = _derive(data, assays=assays, samples=samples)
    derived['provenance'].append({'step': 'drop_samples', 'samples': to_drop})

    print(f"\nRemaining samples: {derived['metadata']['n_samples']}")
    print("="*80 + "\n")

    return derived
