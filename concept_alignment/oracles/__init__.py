"""Oracle interfaces and their HTTP and local implementations."""

from concept_alignment.config.settings import Settings

from .base import ExtractionOracle, MergeOracle, OracleSuite, ScoringOracle, VennOracle
from .http import OracleHTTPClient, create_http_oracles
from .local import create_local_oracles


def create_oracles(settings: Settings) -> OracleSuite:
    """Build the oracle suite selected by ``settings.oracle_backend``."""
    if settings.oracle_backend == "local":
        return create_local_oracles(settings)
    return create_http_oracles(settings)


__all__ = [
    "ExtractionOracle",
    "MergeOracle",
    "ScoringOracle",
    "VennOracle",
    "OracleSuite",
    "OracleHTTPClient",
    "create_http_oracles",
    "create_local_oracles",
    "create_oracles",
]
