"""
Core package: configuration, errors, logging and key normalization
"""
