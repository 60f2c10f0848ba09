class EnergyRagError(Exception):
    """Base class for errors raised by the retrieval pipeline."""


class RetrievalError(EnergyRagError):
    """Index build or chunk scoring failed; the cause is chained."""
