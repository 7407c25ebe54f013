"""Course pipelines. Every pipeline has a `utils.py` with the analysis steps
and a `run/` directory with command line scripts."""
