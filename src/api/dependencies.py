from __future__ import annotations

from functools import lru_cache

from src.repositories.detected_patterns_repository import DetectedPatternsRepository
from src.services.pattern_detection_service import PatternDetectionService
from src.services.patterns_service import PatternsService


@lru_cache
def get_detected_patterns_repository() -> DetectedPatternsRepository:
    return DetectedPatternsRepository()


def get_pattern_detection_service() -> PatternDetectionService:
    return PatternDetectionService(repository=get_detected_patterns_repository())


def get_patterns_service() -> PatternsService:
    return PatternsService(repository=get_detected_patterns_repository())
