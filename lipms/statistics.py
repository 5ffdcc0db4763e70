"""
Statistical analysis functions for the lipidomics pipeline.

Moderated t-tests (limma linear models with empirical Bayes variance
shrinkage, via inmoose) for group contrasts, with multiple testing
correction.
"""

import inmoose.limma as imo
import numpy as np
import pandas as pd
import patsy
from statsmodels.stats.multitest import multipletests

from .errors import InsufficientGroupsError
from .utils import _get_assay

_CORRECTIONS = ('fdr_bh', 'bonferroni', 'none')


def _parse_contrast(contrast):
    """Return (group_a, group_b) for 'A - B' or ('A', 'B')."""
    if isinstance(contrast, (tuple, list)):
        if len(contrast) != 2:
            raise ValueError(f"Contrast must have two groups, got {contrast}")
        return str(contrast[0]), str(contrast[1])

    text = str(contrast)
    if ' - ' in text:
        parts = text.split(' - ')
    else:
        parts = text.split('-')
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValueError(f"Cannot parse contrast '{contrast}', expected 'A - B'")
    return parts[0].strip(), parts[1].strip()


def _contrast_list(contrasts):
    """
    Normalize the contrasts argument to a list of contrasts.

    A list of two plain group names (no '-') is one contrast, so
    ['KO', 'WT'] means 'KO - WT'.
    """
    if isinstance(contrasts, (str, tuple)):
        return [contrasts]
    contrasts = list(contrasts)
    if (len(contrasts) == 2 and all(isinstance(c, str) for c in contrasts)
            and not any('-' in c for c in contrasts)):
        return [tuple(contrasts)]
    return contrasts


def _group_design(group_labels, levels):
    """
    No-intercept group-means design matrix.

    Groups get formula-safe column names (G0, G1, ...) in sorted level
    order, so any group label can be used.

    Returns
    -------
    tuple of (patsy.DesignMatrix, dict)
        Design matrix and group label -> design column name.
    """
    aliases = {level: f"G{i}" for i, level in enumerate(levels)}
    obs = pd.DataFrame({
        alias: (group_labels == level).astype(int)
        for level, alias in aliases.items()
    })
    design = patsy.dmatrix("0 + " + " + ".join(aliases.values()), obs)
    return design, aliases


def stat_lip(data, contrasts=None, measure=None, group_col='Group', correction=None):
    """
    Moderated differential analysis of group contrasts.

    For each feature:
    - Fits a group-means linear model over all annotated samples (samples
      without a group are left out)
    - Shrinks residual variances towards a common prior estimated from
      all features (limma empirical Bayes)
    - Computes the log fold change, moderated t-statistic and p-value
    - Applies multiple testing correction per contrast

    Values are expected on a log scale (see norm_lip(log=True)).

    Parameters
    ----------
    data : dict
        Output from norm_lip().
    contrasts : str, tuple or list, optional
        'KO - WT', ('KO', 'WT'), ['KO', 'WT'] or a list of 'A - B'
        strings / tuples (default: config statistics.contrasts).
    measure : str, optional
        Assay to test (default: config['measure']).
    group_col : str, optional
        Sample metadata column holding group labels (default: 'Group').
    correction : str, optional
        'fdr_bh' (Benjamini-Hochberg, default), 'bonferroni' or 'none'.

    Returns
    -------
    pd.DataFrame
        One row per feature and contrast: 'Molecule', 'Class', 'total_cl',
        'total_cs', 'istd', 'contrast', 'logFC', 'AveExpr', 't', 'df',
        'pvalue', 'adj_pvalue'.

    Raises
    ------
    InsufficientGroupsError
        If a contrast group has no samples or no residual degrees of
        freedom remain.

    Example
    -------
    >>> de = stat_lip(data, 'KO - WT')
    >>> significant_molecules(de)
    """
    stats_config = data['config']['statistics']
    measure = measure or data['config']['measure']
    correction = correction or stats_config['correction']
    if contrasts is None:
        contrasts = stats_config['contrasts']
    if not contrasts:
        raise ValueError("No contrasts given for differential analysis")
    contrasts = _contrast_list(contrasts)
    if correction not in _CORRECTIONS:
        raise ValueError(f"Unknown correction '{correction}'. Choose from: {', '.join(_CORRECTIONS)}")

    print("\n" + "="*80)
    print("DIFFERENTIAL ANALYSIS")
    print("="*80)

    # =========================================================================
    # 1. PREPARE DESIGN
    # =========================================================================
    print(f"\n[1/3] Preparing data...")

    normalization = data.get('normalization') or {}
    if not normalization.get('log'):
        print(f"  Warning: '{measure}' is not log-transformed, logFC will be a difference of raw means")

    assay = _get_assay(data, measure)
    labels = data['samples'][group_col]
    annotated = labels.notna()
    if (~annotated).any():
        print(f"  Leaving out {int((~annotated).sum())} sample(s) without a group")

    values = assay.loc[:, annotated.to_numpy()]
    group_labels = labels[annotated].astype(str)
    levels = sorted(pd.unique(group_labels))

    parsed = [_parse_contrast(c) for c in contrasts]
    for group_a, group_b in parsed:
        missing = [g for g in (group_a, group_b) if g not in levels]
        if missing:
            raise InsufficientGroupsError(
                f"Differential analysis: group(s) {missing} have no samples in '{group_col}'. "
                f"Available groups: {levels}"
            )

    if len(group_labels) - len(levels) <= 0:
        raise InsufficientGroupsError(
            "Differential analysis: no residual degrees of freedom (need replicate samples)"
        )

    print(f"  > {values.shape[0]} features, {values.shape[1]} samples, groups: {', '.join(levels)}")

    # =========================================================================
    # 2. FIT AND MODERATE
    # =========================================================================
    print(f"\n[2/3] Fitting linear models and moderating variances...")

    design, aliases = _group_design(group_labels, levels)

    # Expression: features x samples
    expr = pd.DataFrame(values.to_numpy(dtype=float), columns=values.columns)
    fit = imo.lmFit(expr, design=design)

    contrast_defs = [f"{aliases[a]} - {aliases[b]}" for a, b in parsed]
    contrast_matrix = imo.makeContrasts(contrast_defs, levels=design)
    fit = imo.contrasts_fit(fit, contrasts=contrast_matrix)

    with np.errstate(divide='ignore', invalid='ignore'):
        fit = imo.eBayes(fit)

    log_fcs = np.asarray(fit.coefficients, dtype=float)     # features x contrasts
    t_stats = np.asarray(fit.t, dtype=float)
    p_values = np.asarray(fit.p_value, dtype=float)
    df_total = np.asarray(fit.df_total, dtype=float)
    with np.errstate(invalid='ignore'):
        ave_expr = np.nanmean(expr.to_numpy(), axis=1)

    df_prior = float(np.median(np.atleast_1d(fit.df_prior)))
    s2_prior = float(np.median(np.atleast_1d(fit.s2_prior)))
    print(f"  > Prior df: {df_prior:.2f}, prior variance: {s2_prior:.4g}")

    # =========================================================================
    # 3. CONTRASTS
    # =========================================================================
    print(f"\n[3/3] Testing contrasts (correction: {correction})...")

    features = data['features']
    p_threshold = stats_config['p_threshold']
    tables = []
    for j, (group_a, group_b) in enumerate(parsed):
        name = f"{group_a} - {group_b}"
        pvalues = p_values[:, j]

        valid = np.isfinite(pvalues)
        adj_pvalues = np.full(len(pvalues), np.nan)
        if correction == 'none':
            adj_pvalues = pvalues.copy()
        elif valid.any():
            _, adj, _, _ = multipletests(pvalues[valid], method=correction)
            adj_pvalues[valid] = adj

        table = features[['Molecule', 'Class', 'total_cl', 'total_cs', 'istd']].copy()
        table['contrast'] = name
        table['logFC'] = log_fcs[:, j]
        table['AveExpr'] = ave_expr
        table['t'] = t_stats[:, j]
        table['df'] = df_total
        table['pvalue'] = pvalues
        table['adj_pvalue'] = adj_pvalues
        tables.append(table)

        n_sig = int(np.sum(adj_pvalues[valid] < p_threshold))
        print(f"  {name}: {n_sig} feature(s) with adjusted p < {p_threshold}")

    de_results = pd.concat(tables)

    print("\n" + "="*80)
    print("DIFFERENTIAL ANALYSIS COMPLETE")
    print("="*80 + "\n")

    return de_results


def significant_molecules(de_results, p_cutoff=0.05, logfc_cutoff=1.0):
    """
    Molecules passing adjusted p-value and |logFC| thresholds.

    Returns
    -------
    dict
        Contrast name -> list of molecule names.
    """
    passing = de_results[
        (de_results['adj_pvalue'] < p_cutoff) & (de_results['logFC'].abs() > logfc_cutoff)
    ]
    return {
        contrast: passing.loc[passing['contrast'] == contrast, 'Molecule'].tolist()
        for contrast in de_results['contrast'].unique()
    }
