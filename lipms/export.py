"""
Table export for the lipidomics pipeline.

Writes normalized matrices and analysis results as CSV, and the
abundance / group information pair expected by the LipidSig web tool.
"""

import os

import pandas as pd

from .utils import _get_assay


def _intensity_table(data, measure=None):
    """Features x samples matrix with molecule identity columns in front."""
    measure = measure or data['config']['measure']
    assay = _get_assay(data, measure)
    identity = data['features'][['Molecule', 'Class', 'total_cl', 'total_cs', 'istd']]
    return pd.concat([identity, assay], axis=1)


def export_tables(results, output_dir):
    """
    Write the tables of one analysis branch as CSV.

    Files written when the corresponding result is present:
    - normalized_<measure>.csv (and normalized_istd_<measure>.csv)
    - qc_samples.csv, qc_molecules.csv
    - pca_scores.csv, pca_loadings.csv, oplsda_scores.csv, oplsda_loadings.csv
    - de_results.csv, enrichment.csv

    Parameters
    ----------
    results : dict
        Output from run_branch().
    output_dir : str
        Directory for the CSV files (created if needed).

    Returns
    -------
    list of str
        Paths of the written files.
    """
    os.makedirs(output_dir, exist_ok=True)
    written = []

    def _write(df, filename, index=False):
        path = os.path.join(output_dir, filename)
        df.to_csv(path, index=index)
        written.append(path)
        print(f"  > Saved: {filename}")

    for key, prefix in (('normalized', 'normalized'), ('normalized_istd', 'normalized_istd')):
        data = results.get(key)
        if data is not None:
            measure = data['normalization']['measure']
            _write(_intensity_table(data, measure), f'{prefix}_{measure}.csv')

    qc = results.get('qc')
    if qc is not None:
        qc_samples = pd.DataFrame({'tic': qc['tic'], 'tic_z': qc['tic_z']})
        qc_samples['flagged'] = qc_samples.index.isin(qc['flagged_samples'])
        _write(qc_samples, 'qc_samples.csv', index=True)

        features = results['data']['features']
        qc_molecules = features[['Molecule', 'Class']].copy()
        qc_molecules['cv'] = qc['cv']
        _write(qc_molecules, 'qc_molecules.csv')

    for key in ('pca', 'oplsda'):
        mva = results.get(key)
        if mva is None:
            continue
        _write(mva['scores'], f'{key}_scores.csv', index=True)
        loadings = pd.concat([mva['features'][['Molecule', 'Class']], mva['loadings']], axis=1)
        _write(loadings, f'{key}_loadings.csv')

    if results.get('de_results') is not None:
        _write(results['de_results'], 'de_results.csv')
    if results.get('enrichment') is not None:
        _write(results['enrichment'], 'enrichment.csv')

    return written


def export_lipidsig(data, output_dir, measure=None, group_col='Group'):
    """
    Write the LipidSig input pair for an experiment.

    - lipidsig_abundance.csv: 'feature' (molecule name) followed by one
      column per annotated sample
    - lipidsig_group_info.csv: 'sample_name', 'label_name', 'group', 'pair'

    Samples without a group are left out. LipidSig expects one row per
    lipid, so transitions should be summarized first.

    Returns
    -------
    tuple of (str, str)
        Paths of the abundance and group information files.
    """
    measure = measure or data['config']['measure']
    assay = _get_assay(data, measure)
    labels = data['samples'][group_col]
    annotated = labels.index[labels.notna()].tolist()

    abundance = assay[annotated].copy()
    abundance.insert(0, 'feature', data['features']['Molecule'])

    group_info = pd.DataFrame({
        'sample_name': annotated,
        'label_name': annotated,
        'group': labels.loc[annotated].astype(str).tolist(),
        'pair': pd.NA,
    })

    os.makedirs(output_dir, exist_ok=True)
    abundance_path = os.path.join(output_dir, 'lipidsig_abundance.csv')
    group_path = os.path.join(output_dir, 'lipidsig_group_info.csv')
    abundance.to_csv(abundance_path, index=False)
    group_info.to_csv(group_path, index=False)

    print(f"  > Saved: lipidsig_abundance.csv ({abundance.shape[0]} lipids x {len(annotated)} samples)")
    print(f"  > Saved: lipidsig_group_info.csv")

    return abundance_path, group_path
