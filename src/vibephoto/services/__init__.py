"""
Business services for VibePhoto
"""
