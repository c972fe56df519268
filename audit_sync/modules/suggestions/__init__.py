"""
Suggestion module.

A suggestion is one actionable fix attached to an opportunity. Its identity
across audit runs is the key its audit's strategy derives from the finding.
"""
