"""Expense categorization - pattern matching, historical learning and ranking."""

from .engine import (
    CategorizationEngine,
    CategorizationResult,
    FeedbackEntry,
    FeedbackStore,
    InMemoryFeedbackStore,
)
from .learner import HistoricalPatternLearner, LearnedPattern, PatternCache, TrainingExample
from .patterns import PatternDictionary, PatternMatch, analyze_text_patterns
from .scoring import CategorySuggestion, extract_keywords, rank_suggestions, score_keyword_match

__all__ = [
    'CategorizationEngine',
    'CategorizationResult',
    'CategorySuggestion',
    'FeedbackEntry',
    'FeedbackStore',
    'HistoricalPatternLearner',
    'InMemoryFeedbackStore',
    'LearnedPattern',
    'PatternCache',
    'PatternDictionary',
    'PatternMatch',
    'TrainingExample',
    'analyze_text_patterns',
    'extract_keywords',
    'rank_suggestions',
    'score_keyword_match',
]
