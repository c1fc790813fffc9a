"""
Timed quiz attempts for Discord: load a published quiz, answer and flag
questions against a countdown, submit once and review the graded result.
"""
