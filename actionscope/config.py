"""
actionscope/config.py

Environment variable configuration.

Contains:
- Config: Centralized settings from environment variables
- LOG_LEVEL, PAGE_SIZE, REUSE_THRESHOLD, ACTION_HEADER, etc.
"""

import logging
import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()


class Config():
    """
    Centralized configuration for environment variables.
    """

    # logging configuration
    LOG_LEVEL: int = logging.getLevelNamesMapping().get(
        os.getenv("LOG_LEVEL", "INFO").upper(),
        logging.INFO
    )
    LOG_DATE_FORMAT: str = os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "[%(asctime)s] %(levelname)s:%(name)s:%(message)s")

    # traffic traversal
    PAGE_SIZE: int = int(os.getenv("ACTIONSCOPE_PAGE_SIZE", "200"))

    # action detection
    ACTION_HEADER: str = os.getenv("ACTIONSCOPE_ACTION_HEADER", "Next-Action")
    CHUNK_PATH_MARKER: str = os.getenv("ACTIONSCOPE_CHUNK_PATH_MARKER", "/_next/static/chunks/")

    # security analysis
    # "Action reused Nx" is reported once prior usages exceed this count
    REUSE_THRESHOLD: int = int(os.getenv("ACTIONSCOPE_REUSE_THRESHOLD", "10"))

    # export
    EXPORT_SAMPLE_SIZE: int = int(os.getenv("ACTIONSCOPE_EXPORT_SAMPLE_SIZE", "5"))

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """
        Return a dictionary of all UPPERCASE class attributes and their values.
        Return:
            dict[str, Any]: A dictionary of all UPPERCASE class attributes and their values.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
