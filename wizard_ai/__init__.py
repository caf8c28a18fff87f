"""
wizard_ai: orchestration layer between the project-setup wizard and a
generative-AI service (caching, rate limiting, retries, fallbacks, cost
accounting).
"""
__version__ = "0.1.0"
