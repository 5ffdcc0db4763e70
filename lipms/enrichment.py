"""
Lipid set enrichment analysis for the lipidomics pipeline.

Tests whether lipid sets (by class, total chain length or total
unsaturation) sit non-randomly towards either end of a ranked list of
differential analysis results, using GSEApy's pre-ranked enrichment
(weighted running-sum statistic, set permutation null).
"""

import gseapy as gp
import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

_SET_PREFIXES = (
    ('class', 'Class_', 'Class'),
    ('total_cl', 'total_cl_', 'total_cl'),
    ('total_cs', 'total_cs_', 'total_cs'),
)

_COLUMNS = ['set', 'set_type', 'size', 'ES', 'NES', 'pvalue', 'adj_pvalue',
            'leading_edge', 'contrast']


def lipid_sets(features, min_size=2, max_size=None):
    """
    Build named lipid sets from feature annotations.

    Sets are 'Class_<class>', 'total_cl_<n>' and 'total_cs_<n>'.
    Internal standards are not members of any set.

    Parameters
    ----------
    features : pd.DataFrame
        Feature metadata or a DE result table with 'Molecule', 'Class',
        'total_cl', 'total_cs' and 'istd' columns.
    min_size, max_size : int, optional
        Size bounds for a set to be kept.

    Returns
    -------
    dict
        Set name -> (set type, list of molecule names).
    """
    table = features
    if 'istd' in table.columns:
        table = table[~table['istd'].astype(bool)]
    table = table.drop_duplicates(subset='Molecule')

    sets = {}
    for set_type, prefix, column in _SET_PREFIXES:
        if column not in table.columns:
            continue
        for value, members in table.groupby(column, dropna=True)['Molecule']:
            molecules = members.tolist()
            if len(molecules) < min_size:
                continue
            if max_size is not None and len(molecules) > max_size:
                continue
            sets[f'{prefix}{value}'] = (set_type, molecules)
    return sets


def _prerank(ranking, sets, n_perm, seed):
    """
    GSEApy pre-ranked enrichment of the given sets.

    Returns a table indexed by set name with 'ES', 'NES', 'pvalue' and
    'leading_edge'.
    """
    res = gp.prerank(
        rnk=ranking,
        gene_sets={name: members for name, (_, members) in sets.items()},
        min_size=1,
        max_size=len(ranking),
        permutation_num=n_perm,
        weight=1.0,
        ascending=False,
        threads=1,
        outdir=None,
        no_plot=True,
        seed=seed,
        verbose=False,
    )
    table = res.res2d.set_index('Term')
    return pd.DataFrame({
        'ES': pd.to_numeric(table['ES'], errors='coerce'),
        'NES': pd.to_numeric(table['NES'], errors='coerce'),
        'pvalue': pd.to_numeric(table['NOM p-val'], errors='coerce'),
        'leading_edge': table['Lead_genes'].astype(str),
    })


def _lsea_contrast(ranked, sets, n_perm, seed):
    """Enrichment table for one contrast; ``ranked`` is sorted descending."""
    n = len(ranked)
    full = {name: s for name, s in sets.items() if len(s[1]) >= n}
    testable = {name: s for name, s in sets.items() if len(s[1]) < n}

    scores = None
    if testable:
        ranking = pd.Series(ranked['_rank'].to_numpy(dtype=float),
                            index=ranked['Molecule'].to_numpy())
        scores = _prerank(ranking, testable, n_perm, seed)

    rows = []
    for name, (set_type, members) in sets.items():
        if name in full:
            # Nothing outside the set to compare against
            rows.append({'set': name, 'set_type': set_type, 'size': len(members), 'ES': 0.0,
                         'NES': 0.0, 'pvalue': 1.0, 'leading_edge': ''})
            continue
        score = scores.loc[name] if name in scores.index else None
        rows.append({
            'set': name,
            'set_type': set_type,
            'size': len(members),
            'ES': score['ES'] if score is not None else np.nan,
            'NES': score['NES'] if score is not None else np.nan,
            'pvalue': score['pvalue'] if score is not None else np.nan,
            'leading_edge': score['leading_edge'] if score is not None else '',
        })

    return pd.DataFrame(rows, columns=['set', 'set_type', 'size', 'ES', 'NES',
                                       'pvalue', 'leading_edge'])


def lsea_lip(de_results, rank_by='logFC', min_size=2, max_size=500, n_perm=1000, seed=None,
             p_cutoff=0.05):
    """
    Lipid set enrichment analysis on differential analysis results.

    For each contrast, features are ranked by ``rank_by`` (descending) and
    every lipid set is scored with GSEApy's pre-ranked enrichment (running
    sum weighted by |rank_by|). Nominal p-values come from random sets of
    the same size and are corrected across sets with Benjamini-Hochberg.
    A set containing every ranked feature scores ES = 0, p = 1.

    Parameters
    ----------
    de_results : pd.DataFrame
        Output from stat_lip().
    rank_by : str, optional
        Ranking column (default: 'logFC').
    min_size, max_size : int, optional
        Set size bounds (defaults: 2 and 500).
    n_perm : int, optional
        Number of random sets (default: 1000).
    seed : int, optional
        Seed for the permutations (default: random).
    p_cutoff : float, optional
        Adjusted p-value reported as significant in the summary
        (default: 0.05).

    Returns
    -------
    pd.DataFrame
        One row per set and contrast: 'set', 'set_type', 'size', 'ES',
        'NES', 'pvalue', 'adj_pvalue', 'leading_edge', 'contrast'.

    Example
    -------
    >>> enrich = lsea_lip(de, rank_by='logFC')
    >>> significant_lipidsets(enrich)
    """
    print("\n" + "="*80)
    print("LIPID SET ENRICHMENT ANALYSIS")
    print("="*80)

    if seed is None:
        seed = int(np.random.default_rng().integers(0, 2**31 - 1))
    tables = []

    for contrast, group in de_results.groupby('contrast', sort=False):
        ranked = group[group[rank_by].notna()].copy()
        ranked['_rank'] = ranked[rank_by]
        ranked = ranked.sort_values('_rank', ascending=False, kind='mergesort')
        ranked = ranked.drop_duplicates(subset='Molecule')

        sets = lipid_sets(ranked, min_size=min_size, max_size=max_size)
        table = _lsea_contrast(ranked, sets, n_perm, seed)

        table['adj_pvalue'] = np.nan
        valid = table['pvalue'].notna().to_numpy()
        if valid.any():
            _, adj, _, _ = multipletests(table.loc[valid, 'pvalue'].to_numpy(), method='fdr_bh')
            table.loc[valid, 'adj_pvalue'] = adj
        table['contrast'] = contrast
        tables.append(table)

        n_sig = int((table['adj_pvalue'] < p_cutoff).sum())
        print(f"\n  {contrast}: {len(ranked)} ranked features, {len(table)} lipid sets")
        print(f"    {n_sig} set(s) with adjusted p < {p_cutoff}")

    if not tables:
        return pd.DataFrame(columns=_COLUMNS)
    enrich = pd.concat(tables, ignore_index=True)[_COLUMNS]

    print("\n" + "="*80)
    print("ENRICHMENT COMPLETE")
    print("="*80 + "\n")

    return enrich


def significant_lipidsets(enrich_results, p_cutoff=0.05, size_cutoff=2):
    """
    Lipid sets passing an adjusted p-value threshold.

    Returns
    -------
    dict
        Contrast name -> list of set names.
    """
    passing = enrich_results[
        (enrich_results['adj_pvalue'] < p_cutoff) & (enrich_results['size'] >= size_cutoff)
    ]
    return {
        contrast: passing.loc[passing['contrast'] == contrast, 'set'].tolist()
        for contrast in enrich_results['contrast'].unique()
    }


def chain_distribution(de_results, contrast=None):
    """
    Mean logFC by total chain length (rows) and total unsaturation (columns).

    Parameters
    ----------
    contrast : str, optional
        Contrast to summarise (default: the first one).

    Returns
    -------
    pd.DataFrame
        Pivot table, NaN where no lipid has that combination.
    """
    if contrast is None:
        contrast = de_results['contrast'].iloc[0]
    subset = de_results[(de_results['contrast'] == contrast) & ~de_results['istd'].astype(bool)]
    subset = subset.dropna(subset=['total_cl', 'total_cs', 'logFC'])
    subset = subset.astype({'total_cl': int, 'total_cs': int})
    return subset.pivot_table(index='total_cl', columns='total_cs', values='logFC', aggfunc='mean')
