"""Core module - configuration, error taxonomy and observability.

Everything here is shared by the extraction, matching, reconciliation and
assignment packages and has no knowledge of CFDI semantics.
"""

__version__ = "1.0.0"
