"""
Exception types for the trend analysis pipeline

Pixel-level problems never raise (they are masked), acquisition-level
problems drop the acquisition, series-level problems abort only the trend
fit that hit them.
"""

from typing import Optional, Sequence


class SentinelTrendsError(Exception):
    """Base class for all pipeline errors"""


class ConfigError(SentinelTrendsError):
    """Invalid or incomplete configuration"""


class EmptyCollectionError(SentinelTrendsError):
    """No acquisition passed the collection filters"""

    def __init__(self, product_id: str, description: str = ""):
        self.product_id = product_id
        self.description = description
        message = f"No acquisitions matched for {product_id}"
        if description:
            message += f" ({description})"
        super().__init__(message)


class AcquisitionError(SentinelTrendsError):
    """One acquisition cannot be processed; the rest of the collection can"""

    def __init__(self, acquisition_id: str, reason: str, message: Optional[str] = None):
        self.acquisition_id = acquisition_id
        self.reason = reason
        super().__init__(message or f"{acquisition_id}: {reason}")


class MaskingFailure(AcquisitionError):
    """The masking capability could not produce a usable mask for one acquisition"""

    def __init__(self, acquisition_id: str, reason: str):
        super().__init__(acquisition_id, reason, f"Masking failed for {acquisition_id}: {reason}")


class MissingBandError(AcquisitionError, KeyError):
    """A band needed for processing is absent from the acquisition"""

    def __init__(self, acquisition_id: str, bands: Sequence[str], available: Sequence[str] = ()):
        self.bands = list(bands)
        super().__init__(acquisition_id, f"band(s) {self.bands} not found (have {list(available)})")

    def __str__(self) -> str:
        # KeyError would quote the message
        return f"{self.acquisition_id}: {self.reason}"


class DomainError(SentinelTrendsError, ValueError):
    """Numeric input outside the domain of a conversion (e.g. log of non-positive power)"""


class InsufficientDataError(SentinelTrendsError):
    """Too few points to fit a trend"""

    def __init__(self, feature: str, n_points: int, detail: Optional[str] = None):
        self.feature = feature
        self.n_points = n_points
        message = f"Need at least 2 points to fit a trend for {feature}, got {n_points}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
