"""Collect generated files from independent generation passes and write them to disk."""

from gencontent.core import *  # noqa: F401,F403
from gencontent.core import __all__  # noqa: F401

__version__ = "0.1.0"
