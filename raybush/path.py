"""
Data folder helpers for raybush scripts and tests.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def project_root() -> Path:
    """
    Return the root directory of the project.
    """
    root = Path(__file__).parent.parent
    logger.debug("Project root resolved to %s", root)
    return root


def data_path(filename: str) -> Path:
    """
    Return the full path of a file under the project's ``data`` directory.
    """
    p = project_root() / "data" / filename
    logger.debug("Data path for '%s' -> %s", filename, p)
    return p
