import argparse
import logging
from pathlib import Path

import pandas as pd

from genolab.components.annotation_db import AnnotationDB
from genolab.pipelines.annotation.utils import annotation_pipeline
from genolab.utils import print_table, setup_logging

parser = argparse.ArgumentParser(
    description="Annotate genes and summarise an annotation database."
)
parser.add_argument(
    "--annotation-path",
    type=str,
    help="Annotation database table, one column per identifier type",
    required=True,
)
parser.add_argument("--species", type=str, default="Homo sapiens")
parser.add_argument(
    "--genes",
    type=str,
    nargs="*",
    default=[],
    help="Gene identifiers to annotate",
)
parser.add_argument(
    "--genes-path",
    type=str,
    default=None,
    help="Table whose first column (or index) holds the genes to annotate",
)
parser.add_argument("--chromosomes", type=str, nargs="*", default=[])
parser.add_argument("--from-type", type=str, default="ENTREZID")
parser.add_argument(
    "--to-types", type=str, nargs="+", default=["SYMBOL", "GENENAME", "CHR"]
)
parser.add_argument("--results-dir", type=str, default="annotation")
parser.add_argument("--exp-prefix", type=str, default="genes")
parser.add_argument("--log-level", type=str, default="INFO")

user_args = vars(parser.parse_args())
setup_logging(user_args["log_level"])

RESULTS_PATH: Path = Path(user_args["results_dir"])
GENES = list(user_args["genes"])
if user_args["genes_path"] is not None:
    GENES.extend(pd.read_csv(user_args["genes_path"], index_col=0).index.astype(str))

if __name__ == "__main__":
    annotation_db = AnnotationDB.from_csv(
        Path(user_args["annotation_path"]), species=user_args["species"]
    )
    logging.info(
        f"Loaded annotation database ({annotation_db.species}) with keytypes "
        f"{annotation_db.keytypes()}"
    )
    genes_annotated = annotation_pipeline(
        annotation_db,
        results_path=RESULTS_PATH,
        exp_prefix=user_args["exp_prefix"],
        genes=GENES or None,
        chromosomes=user_args["chromosomes"],
        from_type=user_args["from_type"],
        to_types=user_args["to_types"],
    )
    if not genes_annotated.empty:
        print_table(genes_annotated, title="Annotated genes", max_rows=20)
