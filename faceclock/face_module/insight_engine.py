from __future__ import annotations

import numpy as np
import torch

from faceclock.exceptions import PerceptionFailure
from faceclock.face_module.perception import FaceDetection

try:
    from insightface.app import FaceAnalysis
    from insightface.utils import face_align
except ImportError:  # pragma: no cover - handled at runtime.
    FaceAnalysis = None
    face_align = None


class InsightFacePerception:
    """RetinaFace detection with 5-point landmarks and ArcFace embeddings.

    Embeddings are L2-normalized here so that inner products downstream are
    cosine similarities.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        det_size: tuple[int, int] = (640, 640),
        prefer_gpu: bool = True,
        min_confidence: float = 0.5,
    ) -> None:
        if FaceAnalysis is None:
            raise PerceptionFailure("insightface is required. Install the 'vision' extra.")

        self.use_gpu = bool(prefer_gpu and torch.cuda.is_available())
        self.min_confidence = min_confidence
        providers = ["CUDAExecutionProvider", "CPUExecutionProvider"] if self.use_gpu else ["CPUExecutionProvider"]
        try:
            self.app = FaceAnalysis(name=model_name, allowed_modules=["detection", "recognition"], providers=providers)
            self.app.prepare(ctx_id=0 if self.use_gpu else -1, det_size=det_size)
        except Exception as exc:
            raise PerceptionFailure(f"Failed to initialize face models: {exc}") from exc

        self.detector = self.app.det_model
        self.recognizer = self.app.models["recognition"]

    @property
    def device_name(self) -> str:
        if not self.use_gpu:
            return "cpu"
        try:
            return f"cuda:{torch.cuda.get_device_name(0)}"
        except Exception:
            return "cuda"

    def detect(self, image: np.ndarray) -> FaceDetection | None:
        bboxes, kpss = self.detector.detect(image, max_num=0, metric="default")
        if bboxes is None or kpss is None or bboxes.shape[0] == 0:
            return None

        # Single-face design: keep the largest confident face.
        areas = (bboxes[:, 2] - bboxes[:, 0]) * (bboxes[:, 3] - bboxes[:, 1])
        order = np.argsort(-areas)
        for idx in order:
            score = float(bboxes[idx, 4])
            if score >= self.min_confidence:
                return FaceDetection(landmarks=kpss[idx].astype(np.float32), confidence=score)
        return None

    def embed(self, image: np.ndarray, landmarks: np.ndarray) -> np.ndarray:
        aligned = face_align.norm_crop(
            image,
            landmark=np.asarray(landmarks, dtype=np.float32),
            image_size=self.recognizer.input_size[0],
        )
        embedding = np.asarray(self.recognizer.get_feat(aligned), dtype=np.float32).reshape(-1)
        norm = float(np.linalg.norm(embedding))
        if norm <= 1e-8:
            raise PerceptionFailure("Embedding has zero norm.")
        return embedding / norm
