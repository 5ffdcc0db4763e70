"""
Multivariate analysis for the lipidomics pipeline.

PCA (unsupervised) and OPLS-DA (supervised, two groups) over the
samples x features matrix of a normalized experiment.
"""

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .errors import EmptyDatasetError, InsufficientGroupsError
from .utils import _get_assay


def _complete_matrix(data, measure, stage, samples=None):
    """
    Samples x features matrix with incomplete or constant features removed.

    Returns the matrix and the ids of the features that were dropped.

    Raises
    ------
    EmptyDatasetError
        If fewer than 2 samples or no complete, variable feature remain.
    """
    assay = _get_assay(data, measure)
    if samples is not None:
        assay = assay[samples]

    complete = assay.dropna(axis=0, how='any')
    variable = complete.std(axis=1, ddof=1) > 0
    kept = complete.loc[variable]
    dropped = assay.index.difference(kept.index)

    if assay.shape[1] < 2:
        raise EmptyDatasetError(
            f"{stage}: need at least 2 samples in '{measure}', got {assay.shape[1]}"
        )
    if kept.empty:
        raise EmptyDatasetError(
            f"{stage}: no feature of '{measure}' is complete and variable across samples "
            f"({len(assay)} feature(s) with missing values or zero variance)"
        )
    return kept.T, dropped


def _pca(matrix, n_components, scale):
    scaler = StandardScaler(with_std=scale)
    scaled = scaler.fit_transform(matrix.to_numpy())

    n_components = min(n_components, scaled.shape[0], scaled.shape[1])
    pca = PCA(n_components=n_components)
    coords = pca.fit_transform(scaled)

    names = [f'PC{i + 1}' for i in range(n_components)]
    scores = pd.DataFrame(coords, index=matrix.index, columns=names)
    loadings = pd.DataFrame(pca.components_.T, index=matrix.columns, columns=names)
    explained = pd.Series(pca.explained_variance_ratio_, index=names, name='explained_variance_ratio')
    return scores, loadings, explained


def _opls_da(X, y, n_orthogonal):
    """
    Single-response OPLS via NIPALS.

    X and y must already be centered (and scaled). Orthogonal components
    are removed from X before the predictive component is computed.
    """
    X_filtered = X.copy()
    w = X.T @ y / (y @ y)
    w = w / np.linalg.norm(w)

    t_orth, p_orth = [], []
    for _ in range(n_orthogonal):
        t = X_filtered @ w
        p = X_filtered.T @ t / (t @ t)
        w_o = p - (w @ p) * w
        norm = np.linalg.norm(w_o)
        if norm < 1e-10:
            break
        w_o = w_o / norm
        t_o = X_filtered @ w_o
        p_o = X_filtered.T @ t_o / (t_o @ t_o)
        X_filtered = X_filtered - np.outer(t_o, p_o)
        t_orth.append(t_o)
        p_orth.append(p_o)

    t = X_filtered @ w
    p = X_filtered.T @ t / (t @ t)
    c = (y @ t) / (t @ t)

    ss_x = np.sum(X ** 2)
    ss_y = np.sum(y ** 2)
    r2x_pred = np.sum(np.outer(t, p) ** 2) / ss_x if ss_x > 0 else 0.0
    r2x_orth = sum(np.sum(np.outer(a, b) ** 2) for a, b in zip(t_orth, p_orth)) / ss_x if ss_x > 0 else 0.0
    r2y = 1 - np.sum((y - c * t) ** 2) / ss_y if ss_y > 0 else 0.0

    # Orient so the second group scores positive
    if np.corrcoef(t, y)[0, 1] < 0:
        t, p = -t, -p

    return {
        't': t, 'p': p, 't_orth': t_orth, 'p_orth': p_orth,
        'r2x_predictive': float(r2x_pred),
        'r2x_orthogonal': float(r2x_orth),
        'r2y': float(r2y),
    }


def mva_lip(data, method='PCA', measure=None, n_components=None, scale=None,
            group_col=None, groups=None, n_orthogonal=None):
    """
    Run multivariate analysis on a normalized experiment.

    Methods:
    - 'PCA': all samples, components ordered by explained variance
    - 'OPLS-DA': samples of exactly two groups; one predictive (p1) and
      n_orthogonal orthogonal (o1, o2, ...) components

    Features with missing values or zero variance are left out of the fit.

    Parameters
    ----------
    data : dict
        Output from norm_lip().
    method : str, optional
        'PCA' (default) or 'OPLS-DA'.
    measure : str, optional
        Assay to analyse (default: config['measure']).
    n_components : int, optional
        Number of principal components (default: config mva.n_components).
    scale : bool, optional
        Unit-variance scaling after centering (default: config mva.scale).
    group_col : str, optional
        Sample metadata column holding group labels (default: 'Group').
    groups : sequence of two str, optional
        Groups contrasted by OPLS-DA (default: config mva.groups).
    n_orthogonal : int, optional
        Number of orthogonal components for OPLS-DA (default: 1).

    Returns
    -------
    dict
        'method', 'measure', 'scores', 'loadings', 'samples', 'features',
        'groups', 'group_col' plus 'explained_variance_ratio' (PCA) or
        'r2x_predictive', 'r2x_orthogonal', 'r2y' (OPLS-DA).

    Raises
    ------
    InsufficientGroupsError
        If an OPLS-DA group has fewer than 2 samples.
    EmptyDatasetError
        If no complete, variable feature is left to analyse.

    Example
    -------
    >>> pca = mva_lip(data, method='PCA')
    >>> opls = mva_lip(data, method='OPLS-DA', groups=['WT', 'KO'])
    """
    mva_config = data['config']['mva']
    measure = measure or data['config']['measure']
    n_components = n_components or mva_config['n_components']
    scale = mva_config['scale'] if scale is None else scale
    group_col = group_col or mva_config['group_col']
    groups = groups or mva_config.get('groups')
    n_orthogonal = mva_config['n_orthogonal'] if n_orthogonal is None else n_orthogonal

    method_key = method.upper().replace('_', '-')

    print("\n" + "="*80)
    print(f"MULTIVARIATE ANALYSIS ({method_key})")
    print("="*80)

    if method_key == 'PCA':
        matrix, dropped = _complete_matrix(data, measure, 'PCA')
        if len(dropped) > 0:
            print(f"  Warning: {len(dropped)} feature(s) with missing values or zero variance left out")

        scores, loadings, explained = _pca(matrix, n_components, scale)

        print(f"  > {matrix.shape[0]} samples x {matrix.shape[1]} features")
        for name, ratio in explained.head(2).items():
            print(f"    {name} explains {ratio * 100:.1f}% of variance")

        result = {
            'method': 'PCA',
            'explained_variance_ratio': explained,
            'groups': None,
        }

    elif method_key == 'OPLS-DA':
        if groups is None or len(groups) != 2:
            raise InsufficientGroupsError(
                f"OPLS-DA requires exactly two groups, got {groups}"
            )
        group_a, group_b = groups
        labels = data['samples'][group_col]
        counts = {g: int((labels == g).sum()) for g in (group_a, group_b)}
        too_small = {g: n for g, n in counts.items() if n < 2}
        if too_small:
            raise InsufficientGroupsError(
                f"OPLS-DA: groups need at least 2 samples in '{group_col}', got {too_small}"
            )

        fit_samples = labels.index[labels.isin([group_a, group_b])].tolist()
        matrix, dropped = _complete_matrix(data, measure, 'OPLS-DA', samples=fit_samples)
        if len(dropped) > 0:
            print(f"  Warning: {len(dropped)} feature(s) with missing values or zero variance left out")

        X = StandardScaler(with_std=scale).fit_transform(matrix.to_numpy())
        y = (labels.loc[matrix.index] == group_b).astype(float).to_numpy()
        y = y - y.mean()

        n_orthogonal = max(0, min(n_orthogonal, len(fit_samples) - 2))
        fit = _opls_da(X, y, n_orthogonal)

        score_cols = {'p1': fit['t']}
        loading_cols = {'p1': fit['p']}
        for i, (t_o, p_o) in enumerate(zip(fit['t_orth'], fit['p_orth']), start=1):
            score_cols[f'o{i}'] = t_o
            loading_cols[f'o{i}'] = p_o
        scores = pd.DataFrame(score_cols, index=matrix.index)
        loadings = pd.DataFrame(loading_cols, index=matrix.columns)

        print(f"  > {group_a} (n={counts[group_a]}) vs {group_b} (n={counts[group_b]})")
        print(f"    R2X predictive: {fit['r2x_predictive']:.3f}")
        print(f"    R2X orthogonal: {fit['r2x_orthogonal']:.3f}")
        print(f"    R2Y: {fit['r2y']:.3f}")

        result = {
            'method': 'OPLS-DA',
            'groups': (group_a, group_b),
            'r2x_predictive': fit['r2x_predictive'],
            'r2x_orthogonal': fit['r2x_orthogonal'],
            'r2y': fit['r2y'],
        }

    else:
        raise ValueError(f"Unknown multivariate method '{method}'. Choose from: PCA, OPLS-DA")

    scores.index.name = 'SampleID'
    loadings.index.name = 'feature'
    result.update({
        'measure': measure,
        'group_col': group_col,
        'scores': scores,
        'loadings': loadings,
        'samples': data['samples'].loc[scores.index].copy(),
        'features': data['features'].loc[loadings.index].copy(),
    })

    print("="*80 + "\n")
    return result


def top_loadings(mva, n=20, component=None):
    """
    Features with the largest absolute loadings on one component.

    Parameters
    ----------
    mva : dict
        Output from mva_lip().
    n : int, optional
        Number of features (default: 20).
    component : str, optional
        Loading column (default: first component, 'PC1' or 'p1').

    Returns
    -------
    pd.DataFrame
        'Molecule', 'Class', 'loading', sorted by absolute loading.
    """
    component = component or mva['loadings'].columns[0]
    loading = mva['loadings'][component]
    order = loading.abs().sort_values(ascending=False).index[:n]
    table = mva['features'].loc[order, ['Molecule', 'Class']].copy()
    table['loading'] = loading.loc[order]
    return table
