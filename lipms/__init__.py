"""
Lipidomics Analysis Pipeline
============================

A reusable Python package for analyzing untargeted LC-MS lipidomics data.

Main Functions
--------------
prep_lip()              - Load a dataset and join sample annotations
annotate_lip()          - Join sample annotations into an experiment
qc_lip()                - Quality control metrics (TIC, CV, class intensity)
drop_samples()          - Remove problematic samples after QC
summarize_lip()         - Collapse transitions into one row per molecule
norm_lip()              - PQN or internal standard normalization, log transform
mva_lip()               - PCA and OPLS-DA
stat_lip()              - Moderated differential analysis
lsea_lip()              - Lipid set enrichment analysis
viz_lip()               - QC, score, volcano, enrichment and heatmap plots
export_tables()         - Write result tables as CSV
export_lipidsig()       - Write LipidSig input tables
run_pipeline()          - Run every configured dataset end to end
save_data()             - Save analysis data for later
load_data()             - Load saved analysis data

Example Workflow
----------------
>>> from lipms import prep_lip, qc_lip, summarize_lip, norm_lip, mva_lip, stat_lip, lsea_lip
>>>
>>> data = prep_lip('config/experiment.yaml', dataset='positive')
>>> qc = qc_lip(data)
>>> data = summarize_lip(data)
>>> data = norm_lip(data, method='pqn')
>>> pca = mva_lip(data, method='PCA')
>>> de = stat_lip(data, 'R39CHOM - WT')
>>> enrich = lsea_lip(de)
"""

from .prep import prep_lip, annotate_lip, as_experiment
from .qc import qc_lip, drop_samples
from .summarize import summarize_lip
from .normalization import norm_lip, normalize_pqn, normalize_istd
from .multivariate import mva_lip, top_loadings
from .statistics import stat_lip, significant_molecules
from .enrichment import lsea_lip, significant_lipidsets, lipid_sets, chain_distribution
from .visualization import viz_lip
from .export import export_tables, export_lipidsig
from .pipeline import run_branch, run_pipeline
from .utils import save_data, load_data
from .errors import (
    LipidomicsError,
    MalformedInputError,
    EmptyDatasetError,
    UnmatchedSampleError,
    MissingStandardError,
    InvalidValueError,
    InsufficientGroupsError,
)


__version__ = "0.1.0"

__all__ = [
    'prep_lip',
    'annotate_lip',
    'as_experiment',
    'qc_lip',
    'drop_samples',
    'summarize_lip',
    'norm_lip',
    'normalize_pqn',
    'normalize_istd',
    'mva_lip',
    'top_loadings',
    'stat_lip',
    'significant_molecules',
    'lsea_lip',
    'significant_lipidsets',
    'lipid_sets',
    'chain_distribution',
    'viz_lip',
    'export_tables',
    'export_lipidsig',
    'run_branch',
    'run_pipeline',
    'save_data',
    'load_data',
    'LipidomicsError',
    'MalformedInputError',
    'EmptyDatasetError',
    'UnmatchedSampleError',
    'MissingStandardError',
    'InvalidValueError',
    'InsufficientGroupsError',
]
