"""
iqcat: adaptive IQ testing engine built on three-parameter IRT.
"""

__version__ = "0.1.0"
