"""Feature engineering"""

from .engineering import TranscriptFeatureEngine, ScaleParams

__all__ = ['TranscriptFeatureEngine', 'ScaleParams']
