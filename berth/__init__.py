"""berth: lifecycle orchestration for containerized development apps."""

from .config import BERTH_VERSION

__version__ = BERTH_VERSION

__all__ = ["__version__"]
