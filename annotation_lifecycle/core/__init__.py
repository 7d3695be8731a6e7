"""
Core module - UI-agnostic annotation, measurement and persistence logic.
"""
