"""
Data preparation functions for the lipidomics pipeline.

Handles loading wide-format lipidomics exports into an experiment,
lipid annotation, and joining sample annotations.
"""

import os

import numpy as np
import pandas as pd

from .errors import EmptyDatasetError, MalformedInputError, UnmatchedSampleError
from .lipids import annotate_molecules
from .utils import _create_output_dirs, _default_config, _derive, _load_config


def _read_table(path):
    """Read a CSV/TSV/Excel table based on its extension."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    if ext == '.csv':
        return pd.read_csv(path)
    if ext in ('.tsv', '.txt'):
        return pd.read_csv(path, sep='\t')
    if ext in ('.xlsx', '.xls'):
        return pd.read_excel(path)
    raise MalformedInputError(f"Unsupported input format '{ext}' for {path}")


def as_experiment(df, config=None, measure=None):
    """
    Build an experiment from a wide-format lipidomics table.

    One row per detected feature (transition), one numeric column per
    sample, plus identity columns (molecule, class, adduct, retention
    time) whose names are configured under ``data_columns``.

    Parameters
    ----------
    df : pd.DataFrame
        Raw export table.
    config : dict, optional
        Pipeline configuration. Defaults are used for missing keys.
    measure : str, optional
        Name of the intensity measure (default: config['measure'], 'Area').

    Returns
    -------
    dict
        Experiment dictionary with keys 'assays', 'features', 'samples',
        'config', 'metadata', 'provenance' and 'output_dirs'.

    Raises
    ------
    MalformedInputError
        If the molecule column is missing, sample names are duplicated
        or a sample column is not numeric.
    EmptyDatasetError
        If no features or no sample columns are present.

    Example
    -------
    >>> raw = pd.read_csv('positive_ion.csv')
    >>> data = as_experiment(raw)
    >>> data['assays']['Area'].shape
    """
    config = _default_config(config)
    columns = config['data_columns']
    measure = measure or config['measure']

    molecule_col = columns['molecule']
    if molecule_col not in df.columns:
        raise MalformedInputError(
            f"Loader: required molecule column '{molecule_col}' not found. "
            f"Columns present: {list(df.columns)}"
        )

    identity_cols = [
        c for c in (molecule_col, columns.get('class'), columns.get('adduct'),
                    columns.get('retention_time'))
        if c and c in df.columns
    ]
    ignore = [c for c in (columns.get('ignore') or []) if c in df.columns]
    sample_cols = [c for c in df.columns if c not in identity_cols and c not in ignore]

    if len(df) == 0:
        raise EmptyDatasetError("Loader: input table contains zero features")
    if not sample_cols:
        raise EmptyDatasetError("Loader: input table contains zero sample columns")

    sample_ids = [str(c) for c in sample_cols]
    duplicated = pd.Index(sample_ids)[pd.Index(sample_ids).duplicated()].unique().tolist()
    if duplicated:
        raise MalformedInputError(f"Loader: duplicated sample columns {duplicated}")

    intensities = {}
    for col, sample_id in zip(sample_cols, sample_ids):
        values = pd.to_numeric(df[col], errors='coerce')
        bad = values.isna() & df[col].notna()
        if bad.any():
            example = df.loc[bad, col].iloc[0]
            raise MalformedInputError(
                f"Loader: sample column '{sample_id}' has non-numeric value "
                f"{example!r} (row {bad.idxmax()})"
            )
        intensities[sample_id] = values.astype(float).to_numpy()

    feature_index = pd.RangeIndex(len(df), name='feature')
    assay = pd.DataFrame(intensities, index=feature_index)
    assay.columns.name = 'SampleID'

    molecules = df[molecule_col].astype(str).str.strip().tolist()
    classes = df[columns['class']].tolist() if columns.get('class') in df.columns else None

    features = pd.DataFrame({'Molecule': molecules}, index=feature_index)
    features['Adduct'] = (
        df[columns['adduct']].to_numpy() if columns.get('adduct') in df.columns else None
    )
    features['RetentionTime'] = (
        pd.to_numeric(df[columns['retention_time']], errors='coerce').to_numpy()
        if columns.get('retention_time') in df.columns else np.nan
    )
    annotation = annotate_molecules(
        molecules, classes=classes, standards=config['normalization'].get('istd')
    )
    annotation.index = feature_index
    features = pd.concat([features, annotation], axis=1)
    features = features[['Molecule', 'Class', 'Adduct', 'RetentionTime',
                         'total_cl', 'total_cs', 'istd']]

    samples = pd.DataFrame(
        {'Group': pd.Series([None] * len(sample_ids), dtype=object).to_numpy()},
        index=pd.Index(sample_ids, name='SampleID'),
    )

    data = {
        'assays': {measure: assay},
        'features': features,
        'samples': samples,
        'config': config,
        'metadata': {},
        'provenance': [],
        'output_dirs': None,
    }
    data = _derive(data)
    data['provenance'].append({
        'step': 'load',
        'measure': measure,
        'n_features': assay.shape[0],
        'n_samples': assay.shape[1],
    })
    return data


def prep_lip(config_path, dataset=None):
    """
    Load and prepare one lipidomics dataset for analysis.

    This function:
    1. Loads the YAML configuration file
    2. Reads the wide-format export for the requested dataset
    3. Builds the experiment (intensities, lipid annotation, samples)
    4. Joins the sample annotation file, if configured
    5. Creates the output directory structure

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.
    dataset : str, optional
        Key under data_paths.datasets (e.g. 'positive'). Defaults to the
        first configured dataset.

    Returns
    -------
    dict
        Experiment dictionary (see as_experiment).

    Example
    -------
    >>> data = prep_lip('config/experiment.yaml', dataset='positive')
    >>> print(f"Loaded {data['metadata']['n_features']} features")
    """

    # =========================================================================
    # 1. LOAD CONFIGURATION
    # =========================================================================
    print("\n" + "="*80)
    print("STEP 1: LOADING DATA AND CONFIGURATION")
    print("="*80)

    config = _load_config(config_path)
    datasets = config['data_paths'].get('datasets') or {}

    if not datasets:
        raise MalformedInputError(f"No datasets configured under data_paths.datasets in {config_path}")
    if dataset is None:
        dataset = next(iter(datasets))
    if dataset not in datasets:
        raise MalformedInputError(
            f"Dataset '{dataset}' not configured. Available: {list(datasets.keys())}"
        )

    print(f"\n> Configuration loaded")
    print(f"  Experiment: {config['experiment']['name']}")
    print(f"  Dataset: {dataset}")
    print(f"  Measure: {config['measure']}")

    # =========================================================================
    # 2. LOAD LIPIDOMICS DATA
    # =========================================================================
    print(f"\n[1/3] Loading lipidomics data...")

    input_file = datasets[dataset]
    raw = _read_table(input_file)
    print(f"  > Loaded {raw.shape[0]} rows, {raw.shape[1]} columns")

    data = as_experiment(raw, config)
    data['dataset'] = dataset

    features = data['features']
    print(f"  > {data['metadata']['n_features']} features x {data['metadata']['n_samples']} samples")
    print(f"    Lipid classes: {features['Class'].nunique()}")
    print(f"    Internal standards: {int(features['istd'].sum())}")

    unparsed = features['total_cl'].isna().sum()
    if unparsed > 0:
        print(f"  Warning: {unparsed} molecule names without chain annotation")

    # =========================================================================
    # 3. SAMPLE ANNOTATION
    # =========================================================================
    print(f"\n[2/3] Sample annotation...")

    annotation_file = config['data_paths'].get('annotation_file')
    if annotation_file:
        data = annotate_lip(data, annotation_file)
    else:
        print(f"  Warning: No annotation_file configured, all groups are empty")

    # =========================================================================
    # 4. CREATE OUTPUT DIRECTORIES
    # =========================================================================
    print(f"\n[3/3] Creating output directories...")

    output_dir = os.path.join(config['data_paths']['output_dir'], dataset)
    data['output_dirs'] = _create_output_dirs(output_dir)
    print(f"  > Output directories created at: {output_dir}")

    print("\n" + "="*80)
    print("DATA PREPARATION COMPLETE")
    print("="*80)
    print(f"\nFeatures:        {data['metadata']['n_features']}")
    print(f"Samples:         {data['metadata']['n_samples']}")
    print(f"Groups:          {', '.join(map(str, data['metadata']['groups'])) or '-'}")
    print("\n" + "="*80 + "\n")

    return data


def annotate_lip(data, annotation):
    """
    Join sample annotations (group labels) into an experiment.

    Samples are matched on exact 'SampleID' strings. Experiment samples
    absent from the annotation keep a null group: they stay in QC and PCA
    but are left out of OPLS-DA and differential testing.

    Parameters
    ----------
    data : dict
        Experiment from as_experiment() or prep_lip().
    annotation : str or pd.DataFrame
        Path to annotation CSV or the table itself. Must contain 'SampleID'
        and 'Group'; other columns (e.g. 'Group2') are passed through.

    Returns
    -------
    dict
        New experiment with enriched sample metadata.

    Raises
    ------
    UnmatchedSampleError
        If 'SampleID' or 'Group' is missing from the annotation table.
    """
    if isinstance(annotation, pd.DataFrame):
        table = annotation.copy()
        source = 'DataFrame'
    else:
        table = _read_table(annotation)
        source = annotation

    missing = [c for c in ('SampleID', 'Group') if c not in table.columns]
    if missing:
        raise UnmatchedSampleError(
            f"Annotation ({source}) is missing required column(s) {missing}. "
            f"Columns present: {list(table.columns)}"
        )

    table['SampleID'] = table['SampleID'].astype(str)
    table = table.drop_duplicates(subset='SampleID', keep='first').set_index('SampleID')

    samples = data['samples'][[]].copy()
    joined = samples.join(table, how='left')
    joined['Group'] = joined['Group'].map(lambda g: str(g).strip() if pd.notna(g) else None)

    unannotated = joined.index[joined['Group'].isna()].tolist()
    unused = sorted(set(table.index) - set(samples.index))

    print(f"  > Annotated {len(joined) - len(unannotated)}/{len(joined)} samples from {source}")
    if unannotated:
        print(f"  Warning: {len(unannotated)} sample(s) without group: {unannotated}")
    if unused:
        print(f"    {len(unused)} annotation row(s) match no sample")

    derived = _derive(data, samples=joined)
    derived['provenance'].append({
        'step': 'annotate',
        'source': source,
        'unannotated_samples': unannotated,
    })
    return derived
