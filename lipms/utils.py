"""
Utility functions for the lipidomics pipeline.

Internal helpers for configuration loading, experiment bookkeeping,
directory management, and data serialization.
"""

import copy
import os
import pickle

import yaml

from .errors import MalformedInputError

DEFAULT_CONFIG = {
    'experiment': {'name': 'Lipidomics_Experiment'},
    'data_paths': {
        'datasets': {},
        'annotation_file': None,
        'output_dir': 'results',
    },
    'data_columns': {
        'molecule': 'Molecule',
        'class': 'Class',
        'adduct': 'Adduct',
        'retention_time': 'RT',
        'ignore': [],
    },
    'measure': 'Area',
    'qc': {
        'log': True,
        'cv_threshold': 0.3,
        'tic_threshold': 3.0,
        'qc_group': None,
    },
    'summarize': {'method': 'average'},
    'normalization': {
        'method': 'pqn',
        'exclude': 'blank',
        'log': True,
        'log_base': 'e',
        'istd': [],
    },
    'mva': {
        'n_components': 5,
        'scale': True,
        'group_col': 'Group',
        'groups': None,
        'n_orthogonal': 1,
    },
    'statistics': {
        'contrasts': [],
        'correction': 'fdr_bh',
        'p_threshold': 0.05,
        'logfc_threshold': 1.0,
    },
    'enrichment': {
        'rank_by': 'logFC',
        'min_size': 2,
        'max_size': 500,
        'n_perm': 1000,
        'seed': 42,
    },
    'plots': True,
    'visualization': {'heatmap_annotation': 'Group'},
}


def _merge_config(base, override):
    """Recursively merge a user config over the defaults."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_config(config_path):
    """Load YAML config file and fill in defaults."""
    with open(config_path, 'r') as f:
        user_config = yaml.safe_load(f) or {}
    return _merge_config(DEFAULT_CONFIG, user_config)


def _default_config(config=None):
    """Return a complete config dict, filling gaps from DEFAULT_CONFIG."""
    return _merge_config(DEFAULT_CONFIG, config)


def _get_assay(data, measure):
    """Return the intensity matrix for a measure, failing with the known measures."""
    assays = data['assays']
    if measure not in assays:
        raise MalformedInputError(
            f"Measure '{measure}' not found. Available measures: {list(assays.keys())}"
        )
    return assays[measure]


def _derive(data, **updates):
    """
    Build a new experiment dict from an existing one.

    The input dict is never modified; ``assays`` is copied so replacing a
    measure in the result does not leak back into the source experiment.
    """
    derived = copy.copy(data)
    derived['assays'] = dict(data['assays'])
    derived['provenance'] = list(data.get('provenance', []))
    for key, value in updates.items():
        derived[key] = value

    first_assay = next(iter(derived['assays'].values()))
    metadata = dict(data.get('metadata', {}))
    metadata['n_features'] = first_assay.shape[0]
    metadata['n_samples'] = first_assay.shape[1]
    metadata['measures'] = list(derived['assays'].keys())
    groups = derived['samples']['Group'].dropna().unique().tolist()
    metadata['groups'] = groups
    derived['metadata'] = metadata
    return derived


def _create_output_dirs(base_dir):
    """Create organized output directory structure."""
    dirs = {
        'base': base_dir,
        'figures': f"{base_dir}/figures",
        'qc': f"{base_dir}/figures/qc",
        'viz': f"{base_dir}/figures/viz",
        'tables': f"{base_dir}/tables"
    }

    for dir_path in dirs.values():
        os.makedirs(dir_path, exist_ok=True)

    return dirs


def save_data(data, filename=None):
    """
    Save analysis data to pickle file for sequential workflow.

    Parameters
    ----------
    data : dict
        Experiment or branch result dictionary.
    filename : str, optional
        Custom filename. If None, uses data_checkpoint.pkl inside the
        configured output directory.

    Returns
    -------
    str
        Path where data was saved.

    Example
    -------
    >>> data = prep_lip('config/experiment.yaml', dataset='positive')
    >>> save_data(data, 'results/positive_after_prep.pkl')
    """
    if filename is None:
        output_dir = data['config']['data_paths']['output_dir']
        os.makedirs(output_dir, exist_ok=True)
        filename = os.path.join(output_dir, 'data_checkpoint.pkl')

    with open(filename, 'wb') as f:
        pickle.dump(data, f)

    size_mb = os.path.getsize(filename) / (1024 * 1024)

    print(f"\n{'='*80}")
    print(f"DATA SAVED")
    print(f"{'='*80}")
    print(f"Location: {filename}")
    print(f"Size: {size_mb:.1f} MB")
    print(f"\nTo load this data later:")
    print(f"  from lipms import load_data")
    print(f"  data = load_data('{filename}')")
    print(f"{'='*80}\n")

    return filename


def load_data(filepath):
    """
    Load analysis data from pickle file.

    Parameters
    ----------
    filepath : str
        Path to saved pickle file.

    Returns
    -------
    dict
        Experiment or branch result dictionary.
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    print(f"\n{'='*80}")
    print(f"LOADING DATA")
    print(f"{'='*80}")

    with open(filepath, 'rb') as f:
        data = pickle.load(f)

    size_mb = os.path.getsize(filepath) / (1024 * 1024)

    print(f"Location: {filepath}")
    print(f"Size: {size_mb:.1f} MB")

    if 'metadata' in data:
        print(f"\nData contains:")
        print(f"  Features: {data['metadata']['n_features']}")
        print(f"  Samples: {data['metadata']['n_samples']}")
        print(f"  Groups: {data['metadata']['groups']}")

    print(f"{'='*80}\n")

    return data
