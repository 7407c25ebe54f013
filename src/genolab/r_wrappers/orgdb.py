import logging
from typing import Any

import rpy2.robjects as ro
from rpy2.robjects.packages import importr

r_annotation_hub = importr("AnnotationHub")
double_brackets = ro.r("function(obj, idx){return(obj[[idx]])}")


class OrgDB:
    """
    Bioconductor organism annotation database (OrgDb) from AnnotationHub.

    The R counterpart of `components.annotation_db.AnnotationDB`, used when
    the course material needs the full Bioconductor annotation instead of a
    local table.

    Attributes:
        species (str): The species name used to query AnnotationHub.

    Examples:
        >>> from genolab.r_wrappers.orgdb import OrgDB
        >>> org_db = OrgDB(species="Homo sapiens")
        >>> db = org_db.db
    """

    def __init__(self, species: str = "Homo sapiens") -> None:
        self.species = species
        self._db = None

    @property
    def db(self) -> Any:
        """
        The organism database, queried once from AnnotationHub.

        Falls back to the local hub cache when the remote hub cannot be
        reached.
        """
        if self._db is not None:
            return self._db

        try:
            anno_hub = ro.r("function(){suppressMessages(AnnotationHub())}")()
        except Exception as e:
            logging.warning(e)
            anno_hub = ro.r(
                "function(){suppressMessages(AnnotationHub(localHub=TRUE))}"
            )()

        self._db = double_brackets(
            anno_hub,
            r_annotation_hub.query(
                anno_hub, ro.StrVector((self.species, "^org.*"))
            ).names[0],
        )
        return self._db

    def keytypes(self):
        return list(ro.r("keytypes")(self.db))
