import argparse
import functools
import logging
import multiprocessing
import warnings
from multiprocessing import freeze_support
from pathlib import Path
from typing import Dict, Iterable, Tuple

from tqdm.rich import tqdm

from genolab.components.annotation_db import AnnotationDB
from genolab.data.io import read_expression_set, read_geo_series_matrix
from genolab.data.utils import parallelize_map
from genolab.pipelines.differential_expression.utils import differential_expression
from genolab.utils import run_func_dict, setup_logging

parser = argparse.ArgumentParser(
    description="Differential expression between groups of microarray samples."
)
parser.add_argument(
    "--geo-series-matrix",
    type=str,
    help="GEO series matrix file (GSExxx_series_matrix.txt[.gz])",
    default=None,
)
parser.add_argument(
    "--exprs-path",
    type=str,
    help="Features x samples expression matrix (.csv or .tsv)",
    default=None,
)
parser.add_argument(
    "--pheno-path",
    type=str,
    help="Samples x variables phenotype table (.csv or .tsv)",
    default=None,
)
parser.add_argument(
    "--feature-path",
    type=str,
    help="Features x annotations table (.csv or .tsv)",
    default=None,
)
parser.add_argument(
    "--annotation-path",
    type=str,
    help="Annotation database table, one column per identifier type",
    default=None,
)
parser.add_argument(
    "--species",
    type=str,
    help="Species of the annotation database",
    default="Homo sapiens",
)
parser.add_argument(
    "--from-type",
    type=str,
    help="Identifier type of the features in the annotation database",
    default="PROBEID",
)
parser.add_argument(
    "--contrast-factor",
    type=str,
    help="Phenotype column that defines the groups",
    required=True,
)
parser.add_argument(
    "--contrasts",
    type=str,
    nargs="+",
    help='Contrasts as "test:control" pairs of levels of the contrast factor',
    required=True,
)
parser.add_argument(
    "--results-dir",
    type=str,
    help="Directory where results are stored",
    default="diff_expr",
)
parser.add_argument(
    "--method",
    type=str,
    choices=("ttest", "welch", "moderated", "limma"),
    default="moderated",
)
parser.add_argument("--adjust-method", type=str, default="BH")
parser.add_argument("--p-ths", type=float, nargs="+", default=[0.05])
parser.add_argument("--lfc-ths", type=float, nargs="+", default=[1.0])
parser.add_argument(
    "--log2",
    action="store_true",
    help="Log2 transform the expression values before testing",
)
parser.add_argument(
    "--plots-suffix",
    type=str,
    default=".html",
    help="Format of the plots (.html, or .pdf/.png/.svg with kaleido installed)",
)
parser.add_argument(
    "--threads",
    type=int,
    help="Number of threads for parallel processing",
    nargs="?",
    default=max(1, multiprocessing.cpu_count() - 2),
)
parser.add_argument("--log-level", type=str, default="INFO")

user_args = vars(parser.parse_args())
setup_logging(user_args["log_level"])
warnings.filterwarnings("ignore")

RESULTS_PATH: Path = Path(user_args["results_dir"])
RESULTS_PATH.mkdir(exist_ok=True, parents=True)
PLOTS_PATH: Path = RESULTS_PATH.joinpath("plots")
PLOTS_PATH.mkdir(exist_ok=True, parents=True)
CONTRAST_FACTOR: str = user_args["contrast_factor"]
CONTRASTS_LEVELS: Iterable[Tuple[str, str]] = [
    tuple(contrast.split(":", 1)) for contrast in user_args["contrasts"]
]
CONTRASTS_LEVELS_COLORS: Dict[str, str] = {}
for test, control in CONTRASTS_LEVELS:
    CONTRASTS_LEVELS_COLORS.setdefault(test, "#8B3A3A")
    CONTRASTS_LEVELS_COLORS.setdefault(control, "#4A708B")
P_COLS: Iterable[str] = ("pvalue", "padj", "qvalue")
P_THS: Iterable[float] = tuple(user_args["p_ths"])
LFC_LEVELS: Iterable[str] = ("all", "up", "down")
LFC_THS: Iterable[float] = tuple(user_args["lfc_ths"])
PARALLEL: bool = user_args["threads"] > 1

if any(len(levels) != 2 for levels in CONTRASTS_LEVELS):
    parser.error('Contrasts must have the form "test:control"')

# 1. Load expression set
if user_args["geo_series_matrix"] is not None:
    eset = read_geo_series_matrix(Path(user_args["geo_series_matrix"]))
elif user_args["exprs_path"] is not None:
    eset = read_expression_set(
        exprs_path=Path(user_args["exprs_path"]),
        pheno_path=(
            Path(user_args["pheno_path"]) if user_args["pheno_path"] else None
        ),
        feature_path=(
            Path(user_args["feature_path"]) if user_args["feature_path"] else None
        ),
    )
else:
    parser.error("Either --geo-series-matrix or --exprs-path must be given")

if user_args["log2"]:
    eset = eset.log2_transform(pseudocount=1)
eset = eset.drop_missing()
logging.info(f"Loaded {eset}")

annotation_db = (
    AnnotationDB.from_csv(Path(user_args["annotation_path"]), species=user_args["species"])
    if user_args["annotation_path"]
    else None
)

# 2. One unit of work per contrast
input_collection = []
for test, control in CONTRASTS_LEVELS:
    eset_contrast = eset.select_samples({CONTRAST_FACTOR: [test, control]})
    input_collection.append(
        dict(
            eset=eset_contrast,
            contrast_factor=CONTRAST_FACTOR,
            contrasts_levels=[(test, control)],
            results_path=RESULTS_PATH,
            plots_path=PLOTS_PATH,
            exp_prefix=f"{CONTRAST_FACTOR}_{test}+{control}_{user_args['method']}",
            method=user_args["method"],
            adjust_method=user_args["adjust_method"],
            p_cols=P_COLS,
            p_ths=P_THS,
            lfc_levels=LFC_LEVELS,
            lfc_ths=LFC_THS,
            annotation_db=annotation_db,
            from_type=user_args["from_type"],
            contrast_levels_colors=CONTRASTS_LEVELS_COLORS,
            plots_suffix=user_args["plots_suffix"],
        )
    )

# 3. Run differential expression
if __name__ == "__main__":
    freeze_support()
    if PARALLEL and len(input_collection) > 1:
        parallelize_map(
            functools.partial(run_func_dict, func=differential_expression),
            input_collection,
            processes=user_args["threads"],
        )
    else:
        for ins in tqdm(input_collection):
            run_func_dict(ins, differential_expression)
