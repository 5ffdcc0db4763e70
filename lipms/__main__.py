"""
Command line entry point: python -m lipms CONFIG [--dataset NAME] [--no-plots]
"""

import argparse
import sys

from .pipeline import run_pipeline


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog='lipms',
        description='Untargeted lipidomics analysis: QC, normalization, PCA/OPLS-DA,\n'
                    'moderated differential analysis and lipid set enrichment.\n\n'
                    'Usage:\n'
                    '  python -m lipms config/experiment.yaml --dataset positive',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('config', help='Configuration YAML file')
    parser.add_argument('-d', '--dataset', action='append',
                        help='Dataset key under data_paths.datasets (repeatable, default: all)')
    parser.add_argument('--no-plots', action='store_true', help='Skip figure rendering')
    parser.add_argument('--version', action='version', version='%(prog)s 0.1.0')

    args = parser.parse_args(argv)

    out = run_pipeline(args.config, datasets=args.dataset, plots=False if args.no_plots else None)
    return 1 if out['errors'] else 0


if __name__ == '__main__':
    sys.exit(main())
