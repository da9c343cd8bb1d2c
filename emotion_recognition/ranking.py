from __future__ import annotations
from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple

from .types import ClassificationResult, FaceEmotion, LabelScore, OutputStatus, PipelineOutput, RankedResult


NO_FACE_TEXT = "No face detected"
DETECTION_FAILED_TEXT = "Face detection failed"
PROCESSING_FAILED_TEXT = "Emotion recognition failed"


def format_percent(score: float) -> str:
    """0.7 -> '70.0%'"""
    return f"{score * 100.0:.1f}%"


def to_percent(score: float) -> float:
    return round(score * 100.0, 1)


class ResultRanker:
    """Sorts per-face scores and merges faces into presentation order."""

    @staticmethod
    def rank(result: ClassificationResult) -> RankedResult:
        """Sort descending by score; ties keep model-output order."""
        if not result.scores:
            raise ValueError("cannot rank an empty classification result")
        order = sorted(range(len(result.scores)), key=lambda i: (-result.scores[i].score, i))
        return RankedResult(scores=tuple(result.scores[i] for i in order))

    @staticmethod
    def merge_faces(faces: Iterable[FaceEmotion]) -> "OrderedDict[int, FaceEmotion]":
        """Key faces by their detector-order index, ascending.

        Indices are never renumbered, so a skipped face leaves a gap.
        """
        merged: "OrderedDict[int, FaceEmotion]" = OrderedDict()
        for face in sorted(faces, key=lambda f: f.face_index):
            if face.face_index in merged:
                raise ValueError(f"duplicate face index {face.face_index}")
            merged[face.face_index] = face
        return merged

    @staticmethod
    def percentages(ranked: RankedResult) -> List[Tuple[str, float]]:
        return [(s.label, to_percent(s.score)) for s in ranked.scores]

    @classmethod
    def presentation_rows(cls, faces: Iterable[FaceEmotion]) -> List[Tuple[int, str, List[Tuple[str, float]]]]:
        """(face index, dominant label, [(label, percent), ...]) per face."""
        return [
            (idx, face.dominant_label, cls.percentages(face.ranked))
            for idx, face in cls.merge_faces(faces).items()
        ]

    @classmethod
    def grouped(cls, faces: Iterable[FaceEmotion]) -> Dict[str, List[Tuple[str, str]]]:
        """{'Face N': [(label, '70.0%'), ...]} in face order."""
        return OrderedDict(
            (face.group_name, [(s.label, format_percent(s.score)) for s in face.ranked.scores])
            for face in cls.merge_faces(faces).values()
        )

    @staticmethod
    def summary_line(face: FaceEmotion) -> str:
        top: LabelScore = face.ranked.dominant
        return f"Face {face.face_index}: {top.label} ({format_percent(top.score)})"

    @classmethod
    def describe(cls, output: PipelineOutput) -> List[str]:
        """Text lines for a status label: one per face, or the no-face or failure message."""
        if output.status is OutputStatus.NO_FACE:
            return [NO_FACE_TEXT]
        if output.status is OutputStatus.DETECTION_FAILED:
            return [DETECTION_FAILED_TEXT]
        if output.status is OutputStatus.PROCESSING_FAILED:
            return [PROCESSING_FAILED_TEXT]
        return [cls.summary_line(face) for face in cls.merge_faces(output.faces).values()]
