"""
dck: spaced repetition flashcards stored next to markdown notes.

Questions are written inline in a document as list items ending in "?"
with the answer indented beneath. Review state lives in a JSON sidecar
(``notes.flashcard``) beside each document.
"""

__version__ = "1.0.0"
