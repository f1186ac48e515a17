# ================================================================
# IdeaVerdict - Startup Idea Evaluation Service
# Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
# ================================================================

"""
IdeaVerdict: deterministic verdicts for startup ideas.

An idea goes to a language model for a scored evaluation; the verdict is
then derived from the score through a single shared band table, never
taken from the model's own wording.

Quick Start:
    >>> from ideaverdict.verdict import derive_outcome
    >>> outcome = derive_outcome("VERDICT: DO NOT BUILD\\nIDEA STRENGTH SCORE: 75%")
    >>> outcome.label
    'BUILD'

Serving:
    $ ideaverdict serve --port 8000
"""

__version__ = "0.1.0"
__author__ = "Antagon Inc."
__license__ = "Apache-2.0"
