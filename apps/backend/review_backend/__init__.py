"""Flashcard review backend: SM-2 scheduling over SQLite or Firestore."""
