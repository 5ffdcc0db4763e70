"""Tests for lipms.multivariate module."""

import numpy as np
import pytest

from lipms import mva_lip, top_loadings
from lipms.errors import EmptyDatasetError, InsufficientGroupsError


class TestPca:
    def test_scores_and_loadings_shape(self, normalized):
        pca = mva_lip(normalized, method='PCA', n_components=3)

        assert list(pca['scores'].columns) == ['PC1', 'PC2', 'PC3']
        assert len(pca['scores']) == normalized['metadata']['n_samples']
        assert len(pca['loadings']) == normalized['metadata']['n_features']

    def test_components_ordered_by_variance(self, normalized):
        pca = mva_lip(normalized, method='PCA')
        ratio = pca['explained_variance_ratio'].to_numpy()
        assert np.all(np.diff(ratio) <= 1e-12)

    def test_unannotated_samples_included(self, normalized):
        pca = mva_lip(normalized, method='PCA')
        assert 'Extra_1' in pca['scores'].index

    def test_incomplete_features_left_out(self, normalized):
        normalized['assays']['Area'].loc[0, 'WT_1'] = np.nan
        pca = mva_lip(normalized, method='PCA')
        assert 0 not in pca['loadings'].index

    def test_no_complete_feature_raises(self, normalized):
        # Every feature is missing in one sample
        normalized['assays']['Area']['WT_1'] = np.nan
        with pytest.raises(EmptyDatasetError):
            mva_lip(normalized, method='PCA')

    def test_unknown_method_raises(self, normalized):
        with pytest.raises(ValueError):
            mva_lip(normalized, method='PLS-DA')


class TestOplsDa:
    def test_two_groups(self, normalized):
        opls = mva_lip(normalized, method='OPLS-DA', groups=['WT', 'KO'])

        assert set(opls['samples']['Group']) == {'WT', 'KO'}
        assert list(opls['scores'].columns) == ['p1', 'o1']
        assert 0 <= opls['r2y'] <= 1

    def test_predictive_component_separates_groups(self, normalized):
        opls = mva_lip(normalized, method='OPLS-DA', groups=['WT', 'KO'])
        groups = opls['samples']['Group']
        p1 = opls['scores']['p1']

        # Second group scores positive
        assert p1[groups == 'KO'].min() > p1[groups == 'WT'].max()

    def test_null_group_excluded(self, normalized):
        opls = mva_lip(normalized, method='OPLS-DA', groups=['WT', 'KO'])
        assert 'Extra_1' not in opls['scores'].index
        assert 'QC_1' not in opls['scores'].index

    def test_pc_lipids_drive_separation(self, normalized):
        opls = mva_lip(normalized, method='OPLS-DA', groups=['WT', 'KO'])
        top = top_loadings(opls, n=4)
        assert set(top['Class']) == {'PC'}

    def test_group_with_one_sample_raises(self, normalized):
        with pytest.raises(InsufficientGroupsError):
            mva_lip(normalized, method='OPLS-DA', groups=['WT', 'blank'])

    def test_unknown_group_raises(self, normalized):
        with pytest.raises(InsufficientGroupsError):
            mva_lip(normalized, method='OPLS-DA', groups=['WT', 'HET'])

    def test_needs_two_groups(self, normalized):
        with pytest.raises(InsufficientGroupsError):
            mva_lip(normalized, method='OPLS-DA', groups=['WT'])
