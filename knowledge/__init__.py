"""
knowledge — Static driving knowledge table.

Maps a perception label to the concept name, recommended action and
SPARQL query text a knowledge-graph lookup would return.
"""
