"""
Configuration layer: pydantic-settings models and logging setup.
"""
