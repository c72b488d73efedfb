"""Core partial tracking and envelope analysis modules."""

from partialscope.core.frames import Frame, FrameSource
from partialscope.core.spectrum import PeakPickingParams, SpectralPeakExtractor, SpectralPeaks
from partialscope.core.tracker import PartialMatrix, PartialMatrixBuilder
from partialscope.core.fundamental import FundamentalEstimate, FundamentalEstimator, FundamentalParams
from partialscope.core.envelope import EnvelopeAnalysis, EnvelopeAnalyzer, EnvelopeParams

__all__ = [
    "Frame",
    "FrameSource",
    "PeakPickingParams",
    "SpectralPeakExtractor",
    "SpectralPeaks",
    "PartialMatrix",
    "PartialMatrixBuilder",
    "FundamentalEstimate",
    "FundamentalEstimator",
    "FundamentalParams",
    "EnvelopeAnalysis",
    "EnvelopeAnalyzer",
    "EnvelopeParams",
]
