"""Tests for lipms.statistics module."""

import numpy as np
import pandas as pd
import pytest

from lipms import annotate_lip, as_experiment, norm_lip, significant_molecules, stat_lip
from lipms.errors import InsufficientGroupsError


@pytest.fixture
def four_by_four():
    """Log-scale values: F1 is 2.3 higher in KO, every other feature is flat."""
    table = pd.DataFrame({
        'Molecule': ['F1', 'F2', 'F3', 'F4'],
        'S1': [2.0, 5.0, 6.0, 4.0],
        'S2': [2.2, 5.4, 6.05, 4.3],
        'S3': [4.3, 5.4, 6.05, 4.3],
        'S4': [4.5, 5.0, 6.0, 4.0],
    })
    annotation = pd.DataFrame({'SampleID': ['S1', 'S2', 'S3', 'S4'],
                               'Group': ['WT', 'WT', 'KO', 'KO']})
    return annotate_lip(as_experiment(table), annotation)


class TestModeration:
    def test_prior_adds_degrees_of_freedom(self, normalized):
        de = stat_lip(normalized, 'KO - WT')
        # 12 annotated samples in 4 groups leave 8 residual df per feature
        assert (de['df'] >= 8 - 1e-9).all()
        assert (de['df'] <= 8 * len(de) + 1e-9).all()

    def test_unannotated_sample_not_in_design(self, normalized):
        de = stat_lip(normalized, 'KO - WT')
        assert de['AveExpr'].notna().all()
        assert len(de) == normalized['metadata']['n_features']


class TestStatLip:
    def test_end_to_end_four_by_four(self, four_by_four):
        de = stat_lip(four_by_four, 'KO - WT')

        assert de['logFC'].abs().idxmax() == de.index[0]
        assert de['adj_pvalue'].idxmin() == de.index[0]
        assert de.iloc[0]['logFC'] == pytest.approx(2.3)
        np.testing.assert_allclose(de['logFC'].iloc[1:], 0.0, atol=1e-10)

    def test_contrast_swap_negates_logfc(self, four_by_four):
        forward = stat_lip(four_by_four, 'KO - WT')
        reverse = stat_lip(four_by_four, 'WT - KO')

        np.testing.assert_allclose(forward['logFC'], -reverse['logFC'])
        np.testing.assert_allclose(forward['pvalue'], reverse['pvalue'])

    def test_adjusted_not_below_raw(self, normalized):
        de = stat_lip(normalized, 'KO - WT')
        valid = de['pvalue'].notna()
        assert (de.loc[valid, 'adj_pvalue'] >= de.loc[valid, 'pvalue'] - 1e-15).all()

    def test_no_correction_equals_raw(self, normalized):
        de = stat_lip(normalized, 'KO - WT', correction='none')
        np.testing.assert_allclose(de['adj_pvalue'], de['pvalue'])

    def test_pc_lipids_up_in_ko(self, normalized):
        de = stat_lip(normalized, 'KO - WT')
        sig = significant_molecules(de, p_cutoff=0.05, logfc_cutoff=1.0)['KO - WT']
        assert set(sig) == {'PC 32:0', 'PC 34:1', 'PC 36:2', 'PC 38:4'}

    def test_tuple_contrast(self, normalized):
        de = stat_lip(normalized, ('KO', 'WT'))
        assert de['contrast'].unique().tolist() == ['KO - WT']

    def test_two_group_list_is_one_contrast(self, normalized):
        de = stat_lip(normalized, ['KO', 'WT'])
        assert de['contrast'].unique().tolist() == ['KO - WT']
        assert len(de) == normalized['metadata']['n_features']

    def test_multiple_contrasts(self, normalized):
        de = stat_lip(normalized, ['KO - WT', 'QC - WT'])
        assert de['contrast'].unique().tolist() == ['KO - WT', 'QC - WT']
        assert len(de) == 2 * normalized['metadata']['n_features']

    def test_null_group_excluded(self, normalized):
        with_extra = stat_lip(normalized, 'KO - WT')

        # Changing the unannotated sample must not change any result
        normalized['assays']['Area']['Extra_1'] = 0.0
        without = stat_lip(normalized, 'KO - WT')
        np.testing.assert_allclose(with_extra['t'], without['t'])

    def test_contrast_from_config(self, normalized):
        de = stat_lip(normalized)
        assert de['contrast'].unique().tolist() == ['KO - WT']

    def test_result_columns(self, normalized):
        de = stat_lip(normalized, 'KO - WT')
        for col in ('Molecule', 'Class', 'total_cl', 'total_cs', 'logFC', 'AveExpr',
                    't', 'df', 'pvalue', 'adj_pvalue', 'contrast'):
            assert col in de.columns

    def test_missing_group_raises(self, normalized):
        with pytest.raises(InsufficientGroupsError):
            stat_lip(normalized, 'HET - WT')

    def test_no_replicates_raises(self):
        table = pd.DataFrame({'Molecule': ['PC 32:0', 'PC 34:1'], 'A': [1.0, 2.0], 'B': [2.0, 3.0]})
        data = annotate_lip(as_experiment(table),
                            pd.DataFrame({'SampleID': ['A', 'B'], 'Group': ['WT', 'KO']}))
        with pytest.raises(InsufficientGroupsError):
            stat_lip(data, 'KO - WT')

    def test_unknown_correction_raises(self, normalized):
        with pytest.raises(ValueError):
            stat_lip(normalized, 'KO - WT', correction='holm-sidak')

    def test_bad_contrast_raises(self, normalized):
        with pytest.raises(ValueError):
            stat_lip(normalized, 'KO vs WT')


class TestSignificantMolecules:
    def test_thresholds(self):
        de = pd.DataFrame({
            'Molecule': ['a', 'b', 'c'],
            'contrast': ['KO - WT'] * 3,
            'logFC': [2.0, 0.5, -3.0],
            'adj_pvalue': [0.01, 0.01, 0.2],
        })
        assert significant_molecules(de) == {'KO - WT': ['a']}
