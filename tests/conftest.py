"""Shared test fixtures for lipidomics pipeline tests."""

import matplotlib

matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest
import yaml

# (Molecule, Class, Adduct, RT); 'PC 34:1' is measured as two transitions
FEATURES = [
    ('PC 32:0', 'PC', '[M+H]+', 5.1),
    ('PC 34:1', 'PC', '[M+H]+', 5.6),
    ('PC 34:1', 'PC', '[M+Na]+', 5.6),
    ('PC 36:2', 'PC', '[M+H]+', 6.0),
    ('PC 38:4', 'PC', '[M+H]+', 6.3),
    ('PE 34:1', 'PE', '[M+H]+', 5.9),
    ('PE 36:2', 'PE', '[M+H]+', 6.2),
    ('PE 38:4', 'PE', '[M+H]+', 6.6),
    ('TG 50:1', 'TG', '[M+NH4]+', 11.2),
    ('TG 52:2', 'TG', '[M+NH4]+', 11.6),
    ('TG 54:3', 'TG', '[M+NH4]+', 12.0),
    ('LPC 16:0', 'LPC', '[M+H]+', 2.1),
    ('LPC 18:1', 'LPC', '[M+H]+', 2.3),
    ('SM d18:1/16:0', 'SM', '[M+H]+', 4.8),
    ('PC 15:0-18:1(d7)', 'PC', '[M+H]+', 5.4),
]

GROUPS = {
    'WT_1': 'WT', 'WT_2': 'WT', 'WT_3': 'WT', 'WT_4': 'WT',
    'KO_1': 'KO', 'KO_2': 'KO', 'KO_3': 'KO', 'KO_4': 'KO',
    'QC_1': 'QC', 'QC_2': 'QC', 'QC_3': 'QC',
    'Blank_1': 'blank',
}
# Present in the data, absent from the annotation
UNANNOTATED = 'Extra_1'


def _raw_table(seed):
    rng = np.random.default_rng(seed)
    n = len(FEATURES)
    base = rng.uniform(1e4, 1e6, n)
    is_pc = np.array([f[1] == 'PC' and '(d7)' not in f[0] for f in FEATURES])

    table = pd.DataFrame({
        'Molecule': [f[0] for f in FEATURES],
        'Class': [f[1] for f in FEATURES],
        'Adduct': [f[2] for f in FEATURES],
        'RT': [f[3] for f in FEATURES],
    })
    for sample in list(GROUPS) + [UNANNOTATED]:
        dilution = rng.uniform(0.7, 1.4)
        values = base * dilution * rng.lognormal(0, 0.05, n)
        if GROUPS.get(sample) == 'KO':
            values = np.where(is_pc, values * 4, values)
        if GROUPS.get(sample) == 'blank':
            values = values * 0.01
        table[sample] = values
    return table


@pytest.fixture
def raw_table():
    """Wide-format export: identity columns plus one column per sample."""
    return _raw_table(42)


@pytest.fixture
def annotation_table():
    return pd.DataFrame({
        'SampleID': list(GROUPS),
        'Group': list(GROUPS.values()),
        'Group2': ['M', 'F'] * (len(GROUPS) // 2),
    })


@pytest.fixture
def test_config(tmp_path):
    return {
        'experiment': {'name': 'Test_Experiment'},
        'data_paths': {'datasets': {}, 'annotation_file': None, 'output_dir': str(tmp_path / 'results')},
        'qc': {'qc_group': 'QC'},
        'mva': {'n_components': 3, 'groups': ['WT', 'KO']},
        'statistics': {'contrasts': ['KO - WT']},
        'enrichment': {'n_perm': 200, 'seed': 1},
        'plots': False,
    }


@pytest.fixture
def sample_config(tmp_path, test_config):
    """Write two datasets, the annotation and a YAML config to tmp_path."""
    pos_path = str(tmp_path / 'pos.csv')
    neg_path = str(tmp_path / 'neg.csv')
    annotation_path = str(tmp_path / 'SampleAnnotation.csv')

    _raw_table(42).to_csv(pos_path, index=False)
    _raw_table(7).to_csv(neg_path, index=False)
    pd.DataFrame({'SampleID': list(GROUPS), 'Group': list(GROUPS.values())}).to_csv(
        annotation_path, index=False
    )

    config = dict(test_config)
    config['data_paths'] = {
        'datasets': {'positive': pos_path, 'negative': neg_path},
        'annotation_file': annotation_path,
        'output_dir': str(tmp_path / 'results'),
    }

    config_path = str(tmp_path / 'test_config.yaml')
    with open(config_path, 'w') as f:
        yaml.dump(config, f)

    return config_path, tmp_path


@pytest.fixture
def experiment(raw_table, annotation_table, test_config):
    """Loaded and annotated experiment (transitions not yet summarized)."""
    from lipms import annotate_lip, as_experiment

    data = as_experiment(raw_table, test_config)
    return annotate_lip(data, annotation_table)


@pytest.fixture
def normalized(experiment):
    """Summarized, PQN-normalized, log-transformed experiment."""
    from lipms import norm_lip, summarize_lip

    data = summarize_lip(experiment)
    return norm_lip(data, method='pqn')
