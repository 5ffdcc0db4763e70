"""Tests for lipms.enrichment module."""

import numpy as np
import pandas as pd
import pytest

from lipms import chain_distribution, lipid_sets, lsea_lip, significant_lipidsets, stat_lip


def _de_table(molecules, classes, logfc, contrast='KO - WT', total_cl=None, total_cs=None):
    n = len(molecules)
    return pd.DataFrame({
        'Molecule': molecules,
        'Class': classes,
        'total_cl': pd.array(total_cl or [None] * n, dtype='Int64'),
        'total_cs': pd.array(total_cs or [None] * n, dtype='Int64'),
        'istd': [False] * n,
        'contrast': contrast,
        'logFC': logfc,
    })


@pytest.fixture
def de_results(normalized):
    return stat_lip(normalized, 'KO - WT')


class TestLipidSets:
    def test_set_names(self, normalized):
        sets = lipid_sets(normalized['features'])

        assert 'Class_PC' in sets
        assert 'total_cs_1' in sets
        assert sets['Class_PC'][0] == 'class'

    def test_standards_excluded(self, normalized):
        sets = lipid_sets(normalized['features'])
        assert 'PC 15:0-18:1(d7)' not in sets['Class_PC'][1]

    def test_min_size(self, normalized):
        sets = lipid_sets(normalized['features'], min_size=2)
        # Only one sphingomyelin
        assert 'Class_SM' not in sets


class TestLseaLip:
    def test_result_columns(self, de_results):
        enrich = lsea_lip(de_results, n_perm=100, seed=0)
        for col in ('set', 'set_type', 'size', 'ES', 'NES', 'pvalue', 'adj_pvalue',
                    'leading_edge', 'contrast'):
            assert col in enrich.columns

    def test_adjusted_not_below_raw(self, de_results):
        enrich = lsea_lip(de_results, n_perm=100, seed=0)
        assert (enrich['adj_pvalue'] >= enrich['pvalue'] - 1e-15).all()

    def test_up_regulated_class_positive(self, de_results):
        enrich = lsea_lip(de_results, n_perm=200, seed=0)
        pc = enrich[enrich['set'] == 'Class_PC'].iloc[0]

        assert pc['ES'] > 0
        assert pc['NES'] > 0
        assert set(pc['leading_edge'].split(';')) == {'PC 32:0', 'PC 34:1', 'PC 36:2', 'PC 38:4'}

    def test_full_set_not_enriched(self):
        de = _de_table(['PC 32:0', 'PC 34:1', 'PC 36:2'], ['PC'] * 3, [2.0, 0.5, -1.0])
        enrich = lsea_lip(de, n_perm=50, seed=0)
        full = enrich[enrich['set'] == 'Class_PC'].iloc[0]

        assert full['ES'] == 0
        assert full['NES'] == 0
        assert full['pvalue'] == 1.0

    def test_top_ranked_set_scores_one(self):
        molecules = [f'M{i}' for i in range(10)]
        classes = ['PC', 'PC'] + ['PE'] * 8
        logfc = list(np.linspace(3, -1, 10))
        enrich = lsea_lip(_de_table(molecules, classes, logfc), n_perm=200, seed=0)

        pc = enrich[enrich['set'] == 'Class_PC'].iloc[0]
        assert pc['ES'] == pytest.approx(1.0)
        assert pc['leading_edge'] == 'M0;M1'

    def test_seed_reproducible(self, de_results):
        first = lsea_lip(de_results, n_perm=100, seed=3)
        second = lsea_lip(de_results, n_perm=100, seed=3)
        np.testing.assert_allclose(first['pvalue'], second['pvalue'])

    def test_summary_uses_cutoff(self, de_results, capsys):
        lsea_lip(de_results, n_perm=50, seed=0, p_cutoff=0.01)
        assert 'adjusted p < 0.01' in capsys.readouterr().out

    def test_per_contrast(self, normalized):
        de = stat_lip(normalized, ['KO - WT', 'QC - WT'])
        enrich = lsea_lip(de, n_perm=50, seed=0)
        assert set(enrich['contrast']) == {'KO - WT', 'QC - WT'}


class TestSignificantLipidsets:
    def test_thresholds(self):
        enrich = pd.DataFrame({
            'set': ['Class_PC', 'Class_PE', 'total_cs_2'],
            'size': [4, 1, 3],
            'adj_pvalue': [0.01, 0.01, 0.3],
            'contrast': ['KO - WT'] * 3,
        })
        assert significant_lipidsets(enrich, p_cutoff=0.05, size_cutoff=2) == {'KO - WT': ['Class_PC']}


class TestChainDistribution:
    def test_mean_logfc_by_chain(self):
        de = _de_table(['PC 34:1', 'PE 34:1', 'PC 36:2'], ['PC', 'PE', 'PC'], [1.0, 3.0, -1.0],
                       total_cl=[34, 34, 36], total_cs=[1, 1, 2])
        pivot = chain_distribution(de)

        assert pivot.loc[34, 1] == pytest.approx(2.0)
        assert pivot.loc[36, 2] == pytest.approx(-1.0)
        assert np.isnan(pivot.loc[34, 2])
