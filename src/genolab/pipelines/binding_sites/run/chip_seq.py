import argparse
import functools
import multiprocessing
import warnings
from multiprocessing import freeze_support
from pathlib import Path

from tqdm.rich import tqdm

from genolab.data.utils import parallelize_map
from genolab.pipelines.binding_sites.utils import (
    BindingSiteSettings,
    binding_site_pipeline,
)
from genolab.utils import run_func_dict, setup_logging

parser = argparse.ArgumentParser(
    description="Annotate binding sites (BED/narrowPeak) with the genes of a GTF."
)
parser.add_argument(
    "--peaks-paths",
    type=str,
    nargs="+",
    help="One or more BED or narrowPeak files",
    required=True,
)
parser.add_argument("--gtf-path", type=str, help="GTF gene annotation", required=True)
parser.add_argument(
    "--results-dir",
    type=str,
    help="Directory where results are stored",
    default="binding_sites",
)
parser.add_argument("--upstream", type=int, default=3000)
parser.add_argument("--downstream", type=int, default=3000)
parser.add_argument("--n-gene-plots", type=int, default=5)
parser.add_argument("--plots-suffix", type=str, default=".html")
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
PLOTS_PATH: Path = RESULTS_PATH.joinpath("plots")
GTF_PATH: Path = Path(user_args["gtf_path"])
SETTINGS = BindingSiteSettings(
    upstream=user_args["upstream"],
    downstream=user_args["downstream"],
    n_gene_plots=user_args["n_gene_plots"],
    plots_suffix=user_args["plots_suffix"],
)
PARALLEL: bool = user_args["threads"] > 1

input_collection = [
    dict(
        peaks_path=Path(peaks_path),
        gtf_path=GTF_PATH,
        results_path=RESULTS_PATH,
        plots_path=PLOTS_PATH,
        exp_prefix=Path(peaks_path).name.split(".")[0],
        settings=SETTINGS,
    )
    for peaks_path in user_args["peaks_paths"]
]

if __name__ == "__main__":
    freeze_support()
    if PARALLEL and len(input_collection) > 1:
        parallelize_map(
            functools.partial(run_func_dict, func=binding_site_pipeline),
            input_collection,
            processes=user_args["threads"],
        )
    else:
        for ins in tqdm(input_collection):
            run_func_dict(ins, binding_site_pipeline)
