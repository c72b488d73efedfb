"""Time-varying partial tracking and envelope analysis for monophonic recordings."""

from partialscope.core.frames import FrameSource
from partialscope.core.spectrum import SpectralPeakExtractor, analyze_static_spectrum
from partialscope.core.tracker import PartialMatrix, PartialMatrixBuilder
from partialscope.core.fundamental import FundamentalEstimator
from partialscope.core.envelope import EnvelopeAnalyzer
from partialscope.exceptions import InvalidParametersError
from partialscope.pipeline import PartialAnalysisResult, PartialPipeline

__version__ = "0.1.0"
__all__ = [
    "FrameSource",
    "SpectralPeakExtractor",
    "analyze_static_spectrum",
    "PartialMatrix",
    "PartialMatrixBuilder",
    "FundamentalEstimator",
    "EnvelopeAnalyzer",
    "InvalidParametersError",
    "PartialAnalysisResult",
    "PartialPipeline",
]
