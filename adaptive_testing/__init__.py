"""
Adaptive testing engine.

Estimates a test-taker's latent ability from scored item responses under the
three-parameter logistic (3PL) IRT model, selects the next most informative
item, and drives each attempt from start to a scored result.
"""

__version__ = "0.1.0"
