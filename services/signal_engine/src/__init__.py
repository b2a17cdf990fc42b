"""
Signal Engine Service

This service computes technical indicators and scores for crypto assets and
predicts how long trading signals are likely to persist, refining the
prediction with an AI advisory provider chain.
"""

__version__ = "1.0.0"
