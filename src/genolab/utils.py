import contextvars
import logging
import traceback
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Optional

import pandas as pd
from rich import traceback as rich_traceback
from rich.console import Console
from rich.table import Table

logger = logging.getLogger(__name__)


@contextmanager
def context_wrapper():
    ctx = contextvars.copy_context()
    yield lambda func, *args, **kwargs: ctx.run(func, *args, **kwargs)


def run_func_dict(kwargs: Dict, func: Callable) -> Optional[Any]:
    """Run `func(**kwargs)`, logging failures instead of raising them.

    Used to run many independent units of pipeline work (e.g. one contrast
    each) so that one failing unit does not stop the others.
    """
    logger.info(f"Starting execution of {func.__name__}")
    try:
        with context_wrapper() as run_in_context:
            result = run_in_context(func, **kwargs)
            logger.info(f"Successfully executed {func.__name__}")
            return result
    except Exception as e:
        logger.error(f"Error occurred while executing {func.__name__}: {e}")
        logger.debug(traceback.format_exc())
        return None


def setup_logging(level: str = "INFO") -> None:
    """Logging setup shared by the run scripts."""
    _ = rich_traceback.install()
    logging.basicConfig(
        force=True, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    logging.getLogger().setLevel(level.upper())


def print_table(
    df: pd.DataFrame,
    title: str = "",
    columns: Optional[Iterable[str]] = None,
    max_rows: int = 10,
    console: Optional[Console] = None,
) -> None:
    """Print the first rows of a result table to the console."""
    columns = list(columns) if columns is not None else list(df.columns)
    table = Table(title=title)
    table.add_column(df.index.name or "", style="bold")
    for column in columns:
        table.add_column(str(column), justify="right")

    for idx, row in df.head(max_rows).iterrows():
        table.add_row(
            str(idx),
            *[
                f"{row[c]:.3g}" if isinstance(row[c], float) else str(row[c])
                for c in columns
            ],
        )

    (console or Console()).print(table)
