import json
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd


class NpEncoder(json.JSONEncoder):
    """
    JSON encoder for pipeline summaries holding NumPy and pandas objects.

    Tables are written as lists of records, series as mappings, missing
    floating point values as null and paths as strings.

    Examples:
        >>> import json
        >>> json.dumps({"n_degs": np.int64(12)}, cls=NpEncoder)
        '{"n_degs": 12}'
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return None if np.isnan(obj) else float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, pd.DataFrame):
            return obj.reset_index().to_dict(orient="records")
        if isinstance(obj, pd.Series):
            return obj.to_dict()
        if isinstance(obj, Path):
            return str(obj)
        return super(NpEncoder, self).default(obj)
