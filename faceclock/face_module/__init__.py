from .matcher import FaceMatcher, MatchResult, similarity
from .perception import ExclusiveResource, FaceDetection, FacePerception, FrameSource, GuardedPerception

__all__ = [
    "ExclusiveResource",
    "FaceDetection",
    "FaceMatcher",
    "FacePerception",
    "FrameSource",
    "GuardedPerception",
    "MatchResult",
    "similarity",
]
