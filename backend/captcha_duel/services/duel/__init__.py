"""Duel domain: puzzles, scoring, obstructions, opponents and the session.

Everything except ``referee`` is framework-free and runs the same in a
client process, a test, or the relay server. The referee is the
server-side grader and persists through the app's SQLAlchemy models.
"""
