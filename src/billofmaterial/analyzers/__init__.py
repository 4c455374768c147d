"""Analyzers for fetching, normalizing and scoring dependency data."""

from billofmaterial.analyzers.cache import ResponseCache
from billofmaterial.analyzers.compliance import evaluate_compliance
from billofmaterial.analyzers.insights import generate_insights
from billofmaterial.analyzers.normalizer import UNAVAILABLE, ProviderResults, normalize
from billofmaterial.analyzers.pipeline import AnalysisResult, FetchOrchestrator
from billofmaterial.analyzers.scorer import Scorer, risk_level_for

__all__ = [
    "UNAVAILABLE",
    "AnalysisResult",
    "FetchOrchestrator",
    "ProviderResults",
    "ResponseCache",
    "Scorer",
    "evaluate_compliance",
    "generate_insights",
    "normalize",
    "risk_level_for",
]
