"""Prometheus exporter helpers."""

from __future__ import annotations

from prometheus_client import Counter


images_total = Counter(
    "faceblur_images_total",
    "Number of processed images by outcome.",
    ["outcome"],
)

faces_blurred_total = Counter(
    "faceblur_faces_blurred_total",
    "Total number of face regions blurred.",
)

faces_skipped_total = Counter(
    "faceblur_faces_skipped_total",
    "Face regions dropped because they could not be normalised or redacted.",
)
