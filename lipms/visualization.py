"""
Visualization functions for the lipidomics pipeline.

Generates QC plots, multivariate score and loading plots, volcano plots,
enrichment and chain distribution plots, and clustered heatmaps.
"""

import os
import re

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .enrichment import chain_distribution, significant_lipidsets
from .multivariate import top_loadings
from .utils import _create_output_dirs

# Consistent color palette for an arbitrary number of groups
_PALETTE = [
    '#1f77b4', '#2ca02c', '#d62728', '#ff7f0e', '#9467bd',
    '#8c564b', '#e377c2', '#7f7f7f', '#bcbd22', '#17becf',
]
_NO_GROUP = 'none'


def _group_color_map(samples, group_col='Group'):
    """Build a color map for an arbitrary number of sample groups."""
    groups = sorted(samples[group_col].dropna().astype(str).unique())
    colors = {group: _PALETTE[i % len(_PALETTE)] for i, group in enumerate(groups)}
    colors[_NO_GROUP] = '#CCCCCC'
    return colors


def _sample_groups(samples, group_col='Group'):
    return samples[group_col].fillna(_NO_GROUP).astype(str)


def _safe_name(text):
    """File-name friendly version of a contrast or set name."""
    text = str(text).replace(' - ', '_vs_')
    return re.sub(r'[^A-Za-z0-9_.-]+', '_', text).strip('_')


def _save(fig, save_path):
    plt.tight_layout()
    fig.savefig(save_path, dpi=300, bbox_inches='tight')
    plt.close(fig)
    print(f"  > Saved: {os.path.basename(save_path)}")


# =============================================================================
# QC PLOTS
# =============================================================================

def plot_tic(qc, samples, save_path):
    """Bar plot of total intensity per sample, colored by group."""
    tic = qc['tic']
    groups = _sample_groups(samples.loc[tic.index])
    colors = _group_color_map(samples)

    fig, ax = plt.subplots(figsize=(max(8, len(tic) * 0.3), 6))
    ax.bar(range(len(tic)), tic.values, color=[colors[g] for g in groups])

    flagged = set(qc['flagged_samples'])
    for i, sample in enumerate(tic.index):
        if sample in flagged:
            ax.text(i, tic.iloc[i], '*', ha='center', va='bottom', fontsize=12, color='red')

    ax.set_xticks(range(len(tic)))
    ax.set_xticklabels(tic.index, rotation=90, fontsize=7)
    ylabel = 'Total intensity (log)' if qc.get('log', True) else 'Total intensity'
    ax.set_ylabel(ylabel, fontsize=12, fontweight='bold')
    ax.set_title('Total Intensity per Sample', fontsize=14, fontweight='bold')
    handles = [plt.Rectangle((0, 0), 1, 1, color=colors[g]) for g in sorted(set(groups))]
    ax.legend(handles, sorted(set(groups)), title='Group', fontsize=9)
    ax.grid(axis='y', alpha=0.3)
    _save(fig, save_path)


def plot_cv(qc, features, save_path, cv_threshold=0.3):
    """Boxplot of molecule CVs per lipid class with the flagging threshold."""
    cv_df = pd.DataFrame({'Class': features['Class'], 'cv': qc['cv'] * 100}).dropna()

    fig, ax = plt.subplots(figsize=(max(8, cv_df['Class'].nunique() * 0.6), 6))
    order = sorted(cv_df['Class'].unique())
    sns.boxplot(data=cv_df, x='Class', y='cv', order=order, color='#1f77b4',
                fliersize=2, ax=ax)
    ax.axhline(cv_threshold * 100, color='red', linestyle='--', linewidth=1,
               alpha=0.7, label=f'CV = {cv_threshold * 100:.0f}%')
    ax.set_xlabel('Lipid class', fontsize=12, fontweight='bold')
    ax.set_ylabel('CV (%)', fontsize=12, fontweight='bold')
    ax.set_title('Coefficient of Variation by Lipid Class', fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', rotation=45)
    ax.legend(fontsize=9)
    ax.grid(axis='y', alpha=0.3)
    _save(fig, save_path)


def plot_class_boxplot(qc, samples, save_path):
    """Intensity distribution per lipid class, split by group."""
    long_df = qc['class_intensity'].copy()
    long_df['Group'] = _sample_groups(samples).reindex(long_df['SampleID']).to_numpy()
    colors = _group_color_map(samples)

    fig, ax = plt.subplots(figsize=(max(8, long_df['Class'].nunique() * 0.8), 6))
    sns.boxplot(data=long_df, x='Class', y='value', hue='Group',
                order=sorted(long_df['Class'].unique()), palette=colors, fliersize=2, ax=ax)
    ax.set_xlabel('Lipid class', fontsize=12, fontweight='bold')
    ax.set_ylabel('Intensity (log)' if qc.get('log', True) else 'Intensity', fontsize=12, fontweight='bold')
    ax.set_title('Intensity by Lipid Class', fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', rotation=45)
    ax.grid(axis='y', alpha=0.3)
    _save(fig, save_path)


def plot_sample_boxplot(data, save_path, measure=None):
    """Per-sample intensity distributions, e.g. after normalization."""
    measure = measure or data['config']['measure']
    assay = data['assays'][measure]
    samples = data['samples']
    colors = _group_color_map(samples)
    groups = _sample_groups(samples.loc[assay.columns])

    long_df = assay.melt(var_name='SampleID', value_name='value').dropna()
    long_df['Group'] = groups.reindex(long_df['SampleID']).to_numpy()

    fig, ax = plt.subplots(figsize=(max(8, assay.shape[1] * 0.3), 6))
    sns.boxplot(data=long_df, x='SampleID', y='value', hue='Group', order=list(assay.columns),
                palette=colors, dodge=False, fliersize=1, ax=ax)
    normalization = data.get('normalization') or {}
    label = 'Intensity (log)' if normalization.get('log') else 'Intensity'
    ax.set_xlabel('Sample', fontsize=12, fontweight='bold')
    ax.set_ylabel(label, fontsize=12, fontweight='bold')
    title = f"Sample Distributions ({normalization['method'].upper()})" if normalization else 'Sample Distributions'
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', rotation=90, labelsize=7)
    ax.grid(axis='y', alpha=0.3)
    _save(fig, save_path)


# =============================================================================
# MULTIVARIATE PLOTS
# =============================================================================

def plot_mva(mva, save_path):
    """Score plot of the first two components, colored by group."""
    scores = mva['scores']
    samples = mva['samples']
    groups = _sample_groups(samples, mva['group_col'])
    colors = _group_color_map(samples, mva['group_col'])

    x_col = scores.columns[0]
    y_col = scores.columns[1] if scores.shape[1] > 1 else None

    fig, ax = plt.subplots(figsize=(10, 8))
    for group in sorted(groups.unique()):
        mask = (groups == group).to_numpy()
        y_values = scores.loc[mask, y_col] if y_col else np.zeros(mask.sum())
        ax.scatter(scores.loc[mask, x_col], y_values, c=colors[group], label=group,
                   s=100, alpha=0.7, edgecolors='black', linewidth=1)

    if mva['method'] == 'PCA':
        ratio = mva['explained_variance_ratio']
        ax.set_xlabel(f"{x_col} ({ratio[x_col] * 100:.1f}%)", fontsize=12, fontweight='bold')
        if y_col:
            ax.set_ylabel(f"{y_col} ({ratio[y_col] * 100:.1f}%)", fontsize=12, fontweight='bold')
        title = 'PCA Score Plot'
    else:
        ax.set_xlabel(f"{x_col} (R2X {mva['r2x_predictive'] * 100:.1f}%)", fontsize=12, fontweight='bold')
        if y_col:
            ax.set_ylabel(f"{y_col} (R2X {mva['r2x_orthogonal'] * 100:.1f}%)", fontsize=12, fontweight='bold')
        title = f"OPLS-DA Score Plot: {' vs '.join(mva['groups'])} (R2Y {mva['r2y']:.2f})"

    ax.axhline(0, color='black', linewidth=0.5, alpha=0.5)
    ax.axvline(0, color='black', linewidth=0.5, alpha=0.5)
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend(fontsize=10, loc='best')
    ax.grid(alpha=0.3)
    _save(fig, save_path)


def plot_loadings(mva, save_path, top_n=20):
    """Horizontal bar plot of the top loadings on the first component."""
    table = top_loadings(mva, n=top_n).iloc[::-1]
    classes = sorted(table['Class'].fillna(_NO_GROUP).unique())
    colors = {c: _PALETTE[i % len(_PALETTE)] for i, c in enumerate(classes)}

    fig, ax = plt.subplots(figsize=(8, max(4, len(table) * 0.3)))
    ax.barh(table['Molecule'], table['loading'],
            color=[colors[c] for c in table['Class'].fillna(_NO_GROUP)])
    ax.axvline(0, color='black', linewidth=0.5)
    handles = [plt.Rectangle((0, 0), 1, 1, color=colors[c]) for c in classes]
    ax.legend(handles, classes, title='Class', fontsize=8)
    ax.set_xlabel(f"Loading ({mva['loadings'].columns[0]})", fontsize=12, fontweight='bold')
    ax.set_title(f"Top {len(table)} {mva['method']} Loadings", fontsize=14, fontweight='bold')
    ax.tick_params(axis='y', labelsize=8)
    ax.grid(axis='x', alpha=0.3)
    _save(fig, save_path)


# =============================================================================
# DIFFERENTIAL ANALYSIS PLOTS
# =============================================================================

def plot_volcano(de_results, contrast, save_path, p_threshold=0.05, logfc_threshold=1.0, n_labels=10):
    """Volcano plot of one contrast; top hits by adjusted p-value are labeled."""
    table = de_results[de_results['contrast'] == contrast].dropna(subset=['logFC', 'adj_pvalue'])
    neg_log10_pval = -np.log10(table['adj_pvalue'].replace(0, 1e-300))
    significant = (table['adj_pvalue'] < p_threshold) & (table['logFC'].abs() > logfc_threshold)

    categories = np.where(significant & (table['logFC'] > 0), 'up',
                          np.where(significant, 'down', 'not_significant'))

    fig, ax = plt.subplots(figsize=(10, 8))
    for category, color, label in [
        ('not_significant', '#CCCCCC', 'Not Significant'),
        ('down', '#3498DB', 'Down'),
        ('up', '#E74C3C', 'Up')
    ]:
        mask = categories == category
        ax.scatter(table['logFC'][mask], neg_log10_pval[mask], c=color, label=label,
                   s=30, alpha=0.6, edgecolors='none')

    ax.axhline(-np.log10(p_threshold), color='black', linestyle='--',
               linewidth=1, alpha=0.5, label=f'p = {p_threshold}')
    ax.axvline(logfc_threshold, color='black', linestyle='--', linewidth=1, alpha=0.5)
    ax.axvline(-logfc_threshold, color='black', linestyle='--', linewidth=1, alpha=0.5)

    top = table[significant.to_numpy()].nsmallest(n_labels, 'adj_pvalue')
    for _, row in top.iterrows():
        ax.annotate(row['Molecule'],
                    xy=(row['logFC'], -np.log10(max(row['adj_pvalue'], 1e-300))),
                    xytext=(10, 10), textcoords='offset points', fontsize=7, alpha=0.8,
                    arrowprops=dict(arrowstyle='-', lw=0.5, color='black'))

    ax.set_xlabel('Log Fold Change', fontsize=12, fontweight='bold')
    ax.set_ylabel('-Log10 Adjusted P-value', fontsize=12, fontweight='bold')
    ax.set_title(f'Volcano Plot: {contrast}', fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=10)
    ax.grid(alpha=0.3)
    _save(fig, save_path)


def plot_enrichment(de_results, enrich_results, contrast, save_path, annotation='class', p_cutoff=0.05):
    """
    logFC distributions per lipid set, enriched sets highlighted.

    Parameters
    ----------
    annotation : str, optional
        'class' (sets by lipid class) or 'unsat' (sets by total
        unsaturation, 'total_cs').
    """
    if annotation == 'class':
        column, prefix, xlabel = 'Class', 'Class_', 'Lipid class'
    elif annotation == 'unsat':
        column, prefix, xlabel = 'total_cs', 'total_cs_', 'Total double bonds'
    else:
        raise ValueError(f"Unknown enrichment annotation '{annotation}'. Choose from: class, unsat")

    table = de_results[(de_results['contrast'] == contrast) & ~de_results['istd'].astype(bool)]
    table = table.dropna(subset=[column, 'logFC']).copy()
    table[column] = table[column].astype(str)
    sig_sets = set(significant_lipidsets(enrich_results, p_cutoff=p_cutoff).get(contrast, []))

    if annotation == 'unsat':
        order = [str(v) for v in sorted(table[column].astype(int).unique())]
    else:
        order = sorted(table[column].unique())
    colors = {v: ('#E74C3C' if f'{prefix}{v}' in sig_sets else '#CCCCCC') for v in order}

    fig, ax = plt.subplots(figsize=(max(8, len(order) * 0.6), 6))
    sns.boxplot(data=table, x=column, y='logFC', hue=column, order=order, hue_order=order,
                palette=colors, dodge=False, legend=False, fliersize=2, ax=ax)
    ax.axhline(0, color='black', linewidth=0.5)
    ax.set_xlabel(xlabel, fontsize=12, fontweight='bold')
    ax.set_ylabel('Log Fold Change', fontsize=12, fontweight='bold')
    ax.set_title(f'Lipid Set Enrichment: {contrast}', fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', rotation=45)
    handles = [plt.Rectangle((0, 0), 1, 1, color='#E74C3C'), plt.Rectangle((0, 0), 1, 1, color='#CCCCCC')]
    ax.legend(handles, ['Enriched', 'Not enriched'], fontsize=9)
    ax.grid(axis='y', alpha=0.3)
    _save(fig, save_path)


def plot_chain_distribution(de_results, contrast, save_path):
    """Heatmap of mean logFC by total chain length and total double bonds."""
    pivot = chain_distribution(de_results, contrast=contrast)
    if pivot.empty:
        print(f"  Warning: No chain annotations to plot for {contrast}")
        return

    limit = np.nanmax(np.abs(pivot.to_numpy()))
    fig, ax = plt.subplots(figsize=(max(6, pivot.shape[1] * 0.6), max(5, pivot.shape[0] * 0.3)))
    sns.heatmap(pivot, cmap='RdBu_r', center=0, vmin=-limit, vmax=limit,
                cbar_kws={'label': 'Mean Log Fold Change'}, linewidths=0.5, ax=ax)
    ax.invert_yaxis()
    ax.set_xlabel('Total double bonds', fontsize=12, fontweight='bold')
    ax.set_ylabel('Total chain length', fontsize=12, fontweight='bold')
    ax.set_title(f'Chain Distribution: {contrast}', fontsize=14, fontweight='bold')
    _save(fig, save_path)


def plot_heatmap(data, save_path, measure=None, molecules=None, group_col='Group'):
    """
    Clustered heatmap of intensities (row-centered), samples annotated by group.

    Rows and columns are ordered by average-linkage hierarchical clustering.

    Parameters
    ----------
    molecules : list of str, optional
        Restrict to these molecules (default: all complete features).
    """
    measure = measure or data['config']['measure']
    assay = data['assays'][measure]
    features = data['features']
    samples = data['samples']
    if group_col not in samples.columns:
        print(f"  Warning: Annotation column '{group_col}' not in sample metadata, using 'Group'")
        group_col = 'Group'

    if molecules is not None:
        assay = assay.loc[features['Molecule'].isin(molecules).to_numpy()]
    heatmap_data = assay.dropna(axis=0, how='any')
    heatmap_data = heatmap_data.loc[heatmap_data.std(axis=1) > 0]
    if heatmap_data.shape[0] < 2 or heatmap_data.shape[1] < 2:
        print(f"  Warning: Not enough complete features for a clustered heatmap")
        return

    heatmap_data = heatmap_data.sub(heatmap_data.mean(axis=1), axis=0)
    heatmap_data.index = features.loc[heatmap_data.index, 'Molecule'].values

    colors = _group_color_map(samples, group_col)
    col_colors = _sample_groups(samples, group_col).loc[heatmap_data.columns].map(colors)
    show_rows = heatmap_data.shape[0] <= 100

    g = sns.clustermap(
        heatmap_data,
        cmap='RdBu_r',
        center=0,
        col_colors=col_colors,
        cbar_kws={'label': 'Centered Intensity (log)'},
        yticklabels=show_rows,
        xticklabels=True,
        figsize=(16, 14),
        row_cluster=True,
        col_cluster=True,
        method='average',
        metric='euclidean'
    )

    g.ax_heatmap.set_xlabel('Samples', fontsize=12)
    g.ax_heatmap.set_ylabel('Molecules', fontsize=12)
    g.ax_heatmap.set_xticklabels(g.ax_heatmap.get_xticklabels(), rotation=45, ha='right', fontsize=7)
    g.ax_heatmap.set_title(f'Clustered Heatmap ({heatmap_data.shape[0]} molecules)',
                           fontsize=14, fontweight='bold', pad=20)

    g.savefig(save_path, dpi=300)
    plt.close('all')
    print(f"  > Saved: {os.path.basename(save_path)}")


# =============================================================================
# STANDARD FIGURE SET
# =============================================================================

def viz_lip(results, output_dirs=None):
    """
    Create the standard figures for one analysis branch.

    Creates:
    - QC: total intensity, CV by class, class intensity boxplots
    - Sample boxplots after normalization
    - PCA and OPLS-DA score plots with top loadings
    - Volcano, enrichment (class and unsaturation) and chain distribution
      plots per contrast
    - Clustered heatmap of the normalized data

    Parameters
    ----------
    results : dict
        Output from run_branch().
    output_dirs : dict, optional
        Output from _create_output_dirs() (default: the branch's own).

    Returns
    -------
    None
        Saves plots to <output_dir>/figures/qc and <output_dir>/figures/viz.
    """
    print("\n" + "="*80)
    print("CREATING VISUALIZATIONS")
    print("="*80)

    data = results['data']
    config = data['config']
    if output_dirs is None:
        output_dirs = data.get('output_dirs') or _create_output_dirs(config['data_paths']['output_dir'])
    qc_dir = output_dirs['qc']
    viz_dir = output_dirs['viz']
    stats_config = config['statistics']

    print(f"\nOutput directory: {output_dirs['figures']}")

    # =========================================================================
    # 1. QC
    # =========================================================================
    print(f"\n[1/4] QC plots...")
    qc = results.get('qc')
    if qc is not None:
        plot_tic(qc, data['samples'], os.path.join(qc_dir, '01_total_intensity.pdf'))
        plot_cv(qc, data['features'], os.path.join(qc_dir, '02_cv_by_class.pdf'),
                cv_threshold=config['qc']['cv_threshold'])
        plot_class_boxplot(qc, data['samples'], os.path.join(qc_dir, '03_class_intensity.pdf'))

    normalized = results.get('normalized')
    if normalized is not None:
        plot_sample_boxplot(normalized, os.path.join(qc_dir, '04_samples_normalized.pdf'))

    # =========================================================================
    # 2. MULTIVARIATE
    # =========================================================================
    print(f"\n[2/4] Multivariate plots...")
    for key in ('pca', 'oplsda'):
        mva = results.get(key)
        if mva is None:
            continue
        plot_mva(mva, os.path.join(viz_dir, f'{key}_scores.pdf'))
        plot_loadings(mva, os.path.join(viz_dir, f'{key}_loadings.pdf'))

    # =========================================================================
    # 3. DIFFERENTIAL ANALYSIS AND ENRICHMENT
    # =========================================================================
    print(f"\n[3/4] Differential analysis plots...")
    de_results = results.get('de_results')
    enrich = results.get('enrichment')
    if de_results is not None:
        for contrast in de_results['contrast'].unique():
            name = _safe_name(contrast)
            plot_volcano(de_results, contrast, os.path.join(viz_dir, f'volcano_{name}.pdf'),
                         p_threshold=stats_config['p_threshold'],
                         logfc_threshold=stats_config['logfc_threshold'])
            if enrich is not None:
                for annotation in ('class', 'unsat'):
                    plot_enrichment(de_results, enrich, contrast,
                                    os.path.join(viz_dir, f'enrichment_{annotation}_{name}.pdf'),
                                    annotation=annotation)
            plot_chain_distribution(de_results, contrast,
                                    os.path.join(viz_dir, f'chain_distribution_{name}.pdf'))
    else:
        print(f"  Warning: No differential analysis results to plot")

    # =========================================================================
    # 4. HEATMAP
    # =========================================================================
    print(f"\n[4/4] Clustered heatmap...")
    if normalized is not None:
        plot_heatmap(normalized, os.path.join(viz_dir, 'heatmap_clustered.pdf'),
                     group_col=config['visualization']['heatmap_annotation'])

    print("\n" + "="*80)
    print("VISUALIZATION COMPLETE")
    print("="*80 + "\n")
