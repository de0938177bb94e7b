"""
Student Starter Quiz: category/difficulty quiz sessions with durable stats.
"""
