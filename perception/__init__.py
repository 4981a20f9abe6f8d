"""
perception — Simulated perception stage.

Image handles with revocable display URIs, and the detection synthesizer
that stands in for an object-detection model.
"""
