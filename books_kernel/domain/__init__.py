"""
Pure domain layer.

Polarity, projections, posting policies, the document lifecycle and the
saga runner.  Nothing here opens a session or reads the clock directly.
"""
