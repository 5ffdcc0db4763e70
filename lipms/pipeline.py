"""
End-to-end runner for the lipidomics pipeline.

Each configured dataset (e.g. positive and negative ion mode) is an
independent branch: load -> annotate -> QC -> summarize -> normalize ->
PCA / OPLS-DA -> differential analysis -> lipid set enrichment. A failure
in one branch is reported and does not stop the others.
"""

import copy

from .enrichment import lsea_lip, significant_lipidsets
from .errors import LipidomicsError
from .export import export_lipidsig, export_tables
from .multivariate import mva_lip
from .normalization import _standard_mask, norm_lip
from .prep import prep_lip
from .qc import qc_lip
from .statistics import significant_molecules, stat_lip
from .summarize import summarize_lip
from .utils import _load_config
from .visualization import viz_lip


def run_branch(data, config=None):
    """
    Run one loaded, annotated experiment through the analysis stages.

    Parameters
    ----------
    data : dict
        Output from prep_lip() (or as_experiment() + annotate_lip()).
    config : dict, optional
        Configuration (default: data['config']).

    Returns
    -------
    dict
        'data', 'qc', 'summarized', 'normalized', 'normalized_istd' (when
        standards exist and the main method is not ISTD), 'pca', 'oplsda',
        'de_results', 'significant_molecules', 'enrichment',
        'significant_lipidsets'. Stages that are not configured are None.
    """
    if config is None:
        config = data['config']
    else:
        data = copy.copy(data)
        data['config'] = config
    stats_config = config['statistics']
    enrich_config = config['enrichment']

    results = {
        'data': data,
        'dataset': data.get('dataset'),
        'normalized_istd': None,
        'oplsda': None,
        'de_results': None,
        'significant_molecules': None,
        'enrichment': None,
        'significant_lipidsets': None,
    }

    results['qc'] = qc_lip(data)

    summarized = summarize_lip(data, method=config['summarize']['method'])
    results['summarized'] = summarized

    method = config['normalization']['method']
    normalized = norm_lip(summarized, method=method)
    results['normalized'] = normalized

    has_standards = _standard_mask(summarized['features'], config['normalization'].get('istd')).any()
    if method != 'istd' and has_standards:
        results['normalized_istd'] = norm_lip(summarized, method='istd')

    results['pca'] = mva_lip(normalized, method='PCA')

    if config['mva'].get('groups'):
        results['oplsda'] = mva_lip(normalized, method='OPLS-DA')

    if stats_config.get('contrasts'):
        de_results = stat_lip(normalized)
        results['de_results'] = de_results
        results['significant_molecules'] = significant_molecules(
            de_results,
            p_cutoff=stats_config['p_threshold'],
            logfc_cutoff=stats_config['logfc_threshold'],
        )

        enrich = lsea_lip(
            de_results,
            rank_by=enrich_config['rank_by'],
            min_size=enrich_config['min_size'],
            max_size=enrich_config['max_size'],
            n_perm=enrich_config['n_perm'],
            seed=enrich_config.get('seed'),
            p_cutoff=stats_config['p_threshold'],
        )
        results['enrichment'] = enrich
        results['significant_lipidsets'] = significant_lipidsets(
            enrich, p_cutoff=stats_config['p_threshold']
        )

    return results


def run_pipeline(config_path, datasets=None, plots=None):
    """
    Run every configured dataset as an independent branch.

    Per branch, tables are exported to <output_dir>/<dataset>/tables and,
    when plots are enabled, figures to <output_dir>/<dataset>/figures.

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.
    datasets : list of str, optional
        Dataset keys to run (default: all under data_paths.datasets).
    plots : bool, optional
        Render figures (default: config 'plots').

    Returns
    -------
    dict
        'branches' (dataset -> run_branch() output) and 'errors'
        (dataset -> error message) for branches that failed.

    Example
    -------
    >>> out = run_pipeline('config/experiment.yaml')
    >>> out['branches']['positive']['significant_molecules']
    """
    config = _load_config(config_path)
    datasets = datasets or list((config['data_paths'].get('datasets') or {}).keys())
    plots = config['plots'] if plots is None else plots

    print("\n" + "="*80)
    print(f"LIPIDOMICS PIPELINE: {config['experiment']['name']}")
    print("="*80)
    print(f"Datasets: {', '.join(datasets) or '-'}")

    branches = {}
    errors = {}

    for i, dataset in enumerate(datasets, start=1):
        print("\n" + "#"*80)
        print(f"[{i}/{len(datasets)}] BRANCH: {dataset}")
        print("#"*80)

        try:
            data = prep_lip(config_path, dataset=dataset)
            results = run_branch(data)

            print("\nExporting tables...")
            tables_dir = data['output_dirs']['tables']
            export_tables(results, tables_dir)
            export_lipidsig(results['summarized'], tables_dir)

            if plots:
                viz_lip(results)
        except (LipidomicsError, FileNotFoundError) as e:
            print(f"\n  Warning: Branch '{dataset}' failed: {type(e).__name__}: {e}")
            errors[dataset] = f"{type(e).__name__}: {e}"
            continue

        branches[dataset] = results

    print("\n" + "="*80)
    print("PIPELINE COMPLETE")
    print("="*80)
    for dataset in datasets:
        status = 'ok' if dataset in branches else f"failed ({errors[dataset]})"
        print(f"  {dataset}: {status}")
    print("="*80 + "\n")

    return {'branches': branches, 'errors': errors}
