"""Context assembly engine for the AI running coach.

Builds a single prompt context from three knowledge layers: the athlete's own
data, their previous coach's workout library, and methodology book excerpts.
"""

__version__ = "0.1.0"
