"""
VibePhoto API - AI photo studio backend
Model training, image/video generation and billing on top of Replicate, S3 and Asaas
"""

__version__ = "0.1.0"
