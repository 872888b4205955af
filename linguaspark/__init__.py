"""
LinguaSpark lesson pipeline.

Turns text extracted from a web page into a structured language lesson:

- extraction: session state machine, retry policy, history and analytics
- generation: streamed lesson generation client and orchestrator
"""

__version__ = "1.0.0"
